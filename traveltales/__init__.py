"""
TravelTales - Account Security Service

The account-security subsystem of the TravelTales travel blog.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- storage: Redis connection and optimistic transactions
- accounts: Credential store (identity, password hashes, verification)
- tokens: Single-use ephemeral tokens (verify/reset/change)
- session: Cookie-carried JWT sessions and revocation
- auth: Session guard resolving the request principal
- apikeys: Two-slot API-key lifecycle
- security: Rate limiting and CSRF tokens
- middleware: CSRF enforcement middleware
- mail: Outbound mail contract
- countries: API-key gated country data
- api: REST API interface
"""

__version__ = "1.0.0"
