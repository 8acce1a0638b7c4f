"""
auth/realms.py -- The three isolated identity domains and their URL/cookie layout.

A Realm is pure configuration: every cookie name, page path and API path for
one identity domain is derived from its name and prefixes here, so no other
module builds those strings by hand. Cookie names are always "<realm>_...",
which keeps one realm's cookies from ever being read by another realm's
validator.

  realm        pages under    API under               2FA required
  user         /              /api/auth/user          no
  admin        /admin         /api/auth/admin         yes
  supervisor   /supervise     /api/auth/supervisor    yes

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Realm:
    name: str
    label: str
    path_prefix: str  # "" for the default end-user realm
    requires_two_factor: bool

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    @property
    def session_cookie(self) -> str:
        return f"{self.name}_session"

    @property
    def two_factor_cookie(self) -> str:
        return f"{self.name}_2fa_verified"

    @property
    def csrf_cookie(self) -> str:
        return f"{self.name}_csrf"

    @property
    def callback_cookie(self) -> str:
        return f"{self.name}_callback"

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    @property
    def home_path(self) -> str:
        return self.path_prefix or "/"

    @property
    def sign_in_path(self) -> str:
        return f"{self.path_prefix}/sign-in"

    @property
    def verify_request_path(self) -> str:
        return f"{self.path_prefix}/verify-request"

    @property
    def verify_path(self) -> str:
        return f"{self.path_prefix}/verify"

    @property
    def error_path(self) -> str:
        return f"{self.path_prefix}/error"

    @property
    def auth_exception_paths(self) -> frozenset[str]:
        """Pages that must stay reachable without a session to avoid lockout loops."""
        return frozenset({self.sign_in_path, self.verify_request_path, self.verify_path, self.error_path})

    def error_url(self, code: str) -> str:
        return f"{self.error_path}?error={code}"

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    @property
    def api_prefix(self) -> str:
        return f"/api/auth/{self.name}"

    @property
    def email_callback_path(self) -> str:
        return f"{self.api_prefix}/callback/email"

    @property
    def two_factor_verify_path(self) -> str:
        return f"/api/{self.name}-2fa-verify"

    def owns_path(self, path: str) -> bool:
        """True if path lives under this realm's page prefix.

        "/admin" and "/admin/deals" belong to admin; "/administrator" does not.
        The end-user realm owns nothing by prefix -- it is the fallback.
        """
        if not self.path_prefix:
            return False
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    def issuer_label(self, app_name: str) -> str:
        """Issuer shown in authenticator apps and email subjects."""
        if self.name == USER.name:
            return app_name
        return f"{app_name} - {self.label}"


USER = Realm(name="user", label="User", path_prefix="", requires_two_factor=False)
ADMIN = Realm(name="admin", label="Platform Admin", path_prefix="/admin", requires_two_factor=True)
SUPERVISOR = Realm(name="supervisor", label="Supervisor", path_prefix="/supervise", requires_two_factor=True)

REALMS: dict[str, Realm] = {r.name: r for r in (USER, ADMIN, SUPERVISOR)}


def get_realm(name: str) -> Realm | None:
    """Look up a realm by name. Returns None for unknown names."""
    return REALMS.get(name)


def realm_for_path(path: str) -> Realm:
    """Return the realm that owns a request path. Unprefixed paths are end-user paths."""
    for realm in (ADMIN, SUPERVISOR):
        if realm.owns_path(path):
            return realm
    return USER
