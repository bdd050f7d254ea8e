from app.workflows.engine import WorkflowDefinition
from app.workflows.listing_submission import LISTING_SUBMISSION
from app.workflows.report_generation import REPORT_GENERATION
from app.workflows.tier_upgrade import TIER_UPGRADE
from app.workflows.user_registration import USER_REGISTRATION


WORKFLOWS: dict[str, WorkflowDefinition] = {
    d.name: d
    for d in (LISTING_SUBMISSION, REPORT_GENERATION, USER_REGISTRATION, TIER_UPGRADE)
}


def get_workflow(name: str) -> WorkflowDefinition:
    try:
        return WORKFLOWS[name]
    except KeyError:
        raise KeyError(f"Unknown workflow: {name}")
