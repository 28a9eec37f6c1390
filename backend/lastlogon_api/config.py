from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Application settings, read from the environment and `.env`."""

    # Server
    HOST: str = Field(default="127.0.0.1")
    PORT: int = Field(default=8000)
    DEBUG: bool = Field(default=False)

    # Active Directory (LDAP)
    AD_SERVER: Optional[str] = Field(default=None)
    AD_USERNAME: Optional[str] = Field(default=None)
    AD_PASSWORD: Optional[str] = Field(default=None)
    AD_BASE_DN: Optional[str] = Field(default=None)
    AD_USE_SSL: bool = Field(default=False)

    # Which transport talks to the directory: "ldap" or "powershell"
    DIRECTORY_BACKEND: str = Field(default="ldap")

    # WinRM / PowerShell remoting
    WINRM_SERVER: Optional[str] = Field(default=None)
    WINRM_USERNAME: Optional[str] = Field(default=None)
    WINRM_PASSWORD: Optional[str] = Field(default=None)
    WINRM_AUTH: str = Field(default="ntlm")
    WINRM_SSL: bool = Field(default=False)

    # Per domain controller query timeout, in seconds
    DC_QUERY_TIMEOUT: int = Field(default=15)
    MAX_SERVER_WORKERS: int = Field(default=8)
    MAX_ACCOUNT_WORKERS: int = Field(default=1)
    INCLUDE_EXTENDED_ATTRIBUTES: bool = Field(default=False)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: Optional[str] = Field(default=None)

    CORS_ORIGINS: List[str] = Field(default=["*"])

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def ldap_host(self) -> Optional[str]:
        """AD_SERVER without the ldap:// or ldaps:// scheme"""
        if not self.AD_SERVER:
            return None
        return self.AD_SERVER.replace('ldaps://', '').replace('ldap://', '').rstrip('/')

    @property
    def winrm_host(self) -> Optional[str]:
        return self.WINRM_SERVER or self.ldap_host


@lru_cache()
def get_settings() -> Settings:
    """Returns the settings singleton"""
    return Settings()
