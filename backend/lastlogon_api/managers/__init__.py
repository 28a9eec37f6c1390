"""Directory client backends.

- base: DirectoryClient interface shared by the backends
- directory: LdapDirectoryClient (ldap3)
- powershell: PowerShellDirectoryClient (pypsrp / WinRM)
"""
from .base import DirectoryClient
from .directory import LdapDirectoryClient
from .powershell import PowerShellDirectoryClient

__all__ = ["DirectoryClient", "LdapDirectoryClient", "PowerShellDirectoryClient"]
