"""Security policy enforcement: allowlist, then row-level security.

Both stages are no-ops when their feature flag is off, and both are skipped
for the admin role. The allowlist sees the original statement; RLS sees the
allowlist-approved one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .allowlist import Allowlist
from .config import AllowlistPolicy, Configuration, DataSource, RlsPolicy
from .rls import RowLevelSecurity
from .sql.backend import Params

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecuredStatement:
    """Statement as it leaves the security stage.

    Attributes:
        sql: Possibly rewritten SQL
        params: Params, unchanged
        rls_modified: True when RLS altered the SQL; such results are never cached
    """

    sql: str
    params: Params
    rls_modified: bool = False


class SecurityEnforcer:
    """Applies the tenant's allowlist and row policies to each statement."""

    def __init__(
        self,
        data_source: DataSource,
        config: Configuration,
        allowlist: AllowlistPolicy | None = None,
        rls_policies: list[RlsPolicy] | None = None,
    ):
        self.data_source = data_source
        self.config = config
        self.allowlist = Allowlist(allowlist or AllowlistPolicy(), dialect=data_source.dialect)
        self.rls = RowLevelSecurity(
            rls_policies or [], dialect=data_source.dialect, subject=config.subject
        )

    @property
    def allowlist_enabled(self) -> bool:
        return self.config.feature("allowlist") and self.config.role != "admin"

    @property
    def rls_enabled(self) -> bool:
        return self.config.feature("rls") and self.config.role != "admin"

    def secure(self, sql: str, params: Params = None) -> SecuredStatement:
        """Run both stages.

        Raises:
            SecurityRejection: If the allowlist or RLS refuses the statement
        """
        if self.allowlist_enabled:
            self.allowlist.check(sql)

        if not self.rls_enabled:
            return SecuredStatement(sql=sql, params=params)

        rewritten = self.rls.rewrite(sql)
        return SecuredStatement(sql=rewritten, params=params, rls_modified=rewritten != sql)
