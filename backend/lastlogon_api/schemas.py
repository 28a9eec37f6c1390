from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime


class AccountLookup(BaseModel):
    identifier: str
    exists: bool
    distinguished_name: Optional[str] = None


class ServerObservation(BaseModel):
    """One domain controller's view of one account."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    account: str
    server: str
    display_name: Optional[str] = None
    raw_last_logon: Any = None
    description: Optional[str] = None
    when_created: Optional[datetime] = None


class AccountLastLogonResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: Optional[str] = Field(None, alias="displayName")
    account: str = Field(..., alias="accountIdentifier")
    source_server: Optional[str] = Field(None, alias="sourceServerName")
    # None means no DC has a logon on record
    last_logon: Optional[datetime] = Field(None, alias="lastLogon")
    description: Optional[str] = None
    when_created: Optional[datetime] = Field(None, alias="whenCreated")


class ServerWarning(BaseModel):
    account: str
    server: str
    error: str


class LastLogonReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    results: List[AccountLastLogonResult] = Field(default_factory=list)
    not_found: List[str] = Field(default_factory=list, alias="notFound")
    warnings: List[ServerWarning] = Field(default_factory=list)
    servers: List[str] = Field(default_factory=list)


class LastLogonRequest(BaseModel):
    accounts: List[str] = Field(..., min_length=1)
    include_extended: Optional[bool] = None
