from portfolio_analytics.api.security import (
    get_content_admin,
    get_credential_verifier,
    get_current_user,
)
