from pydantic import Field

from app.schemas.common import CamelModel


class RegistrationIn(CamelModel):
    cognito_user_id: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    first_name: str = ""
    last_name: str = ""
    contact_number: str = ""


class UpgradeIn(CamelModel):
    tier: str = "paid"


class ExecutionStarted(CamelModel):
    execution_name: str
