from app.schemas.common import CamelModel


class ExecutionStatusOut(CamelModel):
    execution_name: str
    status: str
    workflow: str | None = None
    entity_id: str | None = None
    state: str | None = None
    report_id: str | None = None
    artifact_key: str | None = None
    artifact_uri: str | None = None
    signed_url: str | None = None
    error: str | None = None
    errors: list[str] | None = None
