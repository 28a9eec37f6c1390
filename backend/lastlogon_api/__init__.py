"""
AD Last Logon

Resolves the real last logon of Active Directory accounts. lastLogon is not
replicated, so every domain controller of the domain is asked and the most
recent answer wins.
"""

__version__ = "0.1.0"
__title__ = "AD Last Logon API"
