"""Desired Vault configuration.

Static tables describing the auth methods, engines, policies, roles and
secrets each command reconciles.
"""

from vault_auto.models import ReconciliationTarget, TargetKind
from vault_auto.reconcile import Generated

KV_MOUNT = "kv"
KUBERNETES_MOUNT = "kubernetes"
TRANSIT_MOUNT = "transit"

# Helm releases that read their configuration from kv/<release>/
RELEASES = (
    "keycloak",
    "awx",
    "crowdsec",
    "gitlab",
    "gitlab-runner",
    "harbor",
    "headlamp",
    "homepage",
    "jenkins",
    "kubescape",
    "loki",
    "matomo",
)

RELEASE_POLICY_TEMPLATE = """path "kv/data/{release}/*" {{
   capabilities = ["read"]
}}"""

ADMIN_POLICY = """# Read system health check
path "sys/health" {
  capabilities = ["read", "sudo"]
}

# List existing policies
path "sys/policies/acl" {
  capabilities = ["list"]
}

# Create and manage ACL policies
path "sys/policies/acl/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

# Manage auth methods broadly across Vault
path "auth/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

# Create, update, and delete auth methods
path "sys/auth/*" {
  capabilities = ["create", "update", "delete", "sudo"]
}

# List auth methods
path "sys/auth" {
  capabilities = ["read"]
}

# Key/value, transit and cubbyhole secrets
path "kv/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

path "transit/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

path "cubbyhole/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

# Vault identities
path "identity/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

# Manage secrets engines
path "sys/mounts/*" {
  capabilities = ["create", "read", "update", "delete", "list", "sudo"]
}

# List existing secrets engines
path "sys/mounts" {
  capabilities = ["read"]
}"""


def _charset_policy(length: int, *rules: tuple[str, int]) -> str:
    lines = [f"length = {length}"]
    for charset, minimum in rules:
        lines += ['rule "charset" {', f'  charset = "{charset}"', f"  min-chars = {minimum}", "}"]
    return "\n".join(lines)


_LOWER = "abcdefghijklmnopqrstuvwxyz"
_UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_DIGITS = "0123456789"
_SPECIAL = "!@#$%^&*"

PASSWORD_POLICIES = {
    "alphanumeric-password": _charset_policy(64, (_LOWER, 16), (_UPPER, 16), (_DIGITS, 16)),
    "alphanumeric-special-password": _charset_policy(64, (_LOWER, 12), (_UPPER, 12), (_DIGITS, 12), (_SPECIAL, 12)),
    "s3-access-key": _charset_policy(32, (_UPPER, 16), (_DIGITS, 12)),
    "s3-secret-key": _charset_policy(64, (_UPPER, 32), (_DIGITS, 24)),
}

TRANSIT_KEY = "vso-client-cache"

TRANSIT_POLICY = f"""path "transit/encrypt/{TRANSIT_KEY}" {{
   capabilities = ["create", "update"]
}}
path "transit/decrypt/{TRANSIT_KEY}" {{
   capabilities = ["create", "update"]
}}"""


def release_policy(release: str) -> ReconciliationTarget:
    return ReconciliationTarget(
        TargetKind.ACL_POLICY, release, {"policy": RELEASE_POLICY_TEMPLATE.format(release=release)}
    )


def kubernetes_role(
    name: str,
    policies: list[str],
    *,
    service_account: str | None = None,
    namespace: str | None = None,
    period: str = "24h",
) -> ReconciliationTarget:
    """Build a Kubernetes auth role bound to one service account."""
    return ReconciliationTarget(
        TargetKind.ROLE,
        name,
        {
            "mount": KUBERNETES_MOUNT,
            "params": {
                "audience": "vault",
                "bound_service_account_names": [service_account or name],
                "bound_service_account_namespaces": [namespace or name],
                "token_period": period,
                "token_policies": policies,
                "token_ttl": "0",
            },
        },
    )


def kv_secret(path: str, data: dict) -> ReconciliationTarget:
    return ReconciliationTarget(TargetKind.KV_SECRET, path, {"mount": KV_MOUNT, "data": data})


def mount_targets(kubernetes_host: str) -> list[ReconciliationTarget]:
    """Auth methods and secrets engines every deployment needs."""
    return [
        ReconciliationTarget(
            TargetKind.AUTH_METHOD,
            KUBERNETES_MOUNT,
            {
                "type": "kubernetes",
                "description": "authenticate with Kubernetes Service Account Tokens",
                "config": {"kubernetes_host": kubernetes_host},
            },
        ),
        ReconciliationTarget(
            TargetKind.AUTH_METHOD,
            "oidc",
            {"type": "oidc", "description": "authenticate with OpenID Connect"},
        ),
        ReconciliationTarget(
            TargetKind.SECRETS_ENGINE,
            KV_MOUNT,
            {
                "type": "kv",
                "description": "store secret values in key/value storage",
                "options": {"version": "2"},
            },
        ),
    ]


def policy_targets() -> list[ReconciliationTarget]:
    """Release, admin and password policies."""
    targets = [release_policy(release) for release in RELEASES]
    targets.append(ReconciliationTarget(TargetKind.ACL_POLICY, "admin", {"policy": ADMIN_POLICY}))
    targets += [
        ReconciliationTarget(TargetKind.PASSWORD_POLICY, name, {"policy": policy})
        for name, policy in PASSWORD_POLICIES.items()
    ]
    return targets


def _gitlab() -> list[ReconciliationTarget]:
    password = Generated("alphanumeric-password")
    return [
        release_policy("gitlab"),
        kubernetes_role("gitlab", ["gitlab"]),
        kv_secret("gitlab/config", {"username": "mg", "password": password}),
        kv_secret("gitlab/credentials/redis", {"username": "redis", "password": password}),
        kv_secret("gitlab/credentials/postgresql", {"username": "gitlab", "password": password}),
        kv_secret(
            "gitlab/credentials/minio",
            {"access_key": Generated("s3-access-key"), "secret_key": Generated("s3-secret-key")},
        ),
    ]


def _keycloak() -> list[ReconciliationTarget]:
    return [
        release_policy("keycloak"),
        kubernetes_role("keycloak", ["keycloak"]),
        kv_secret(
            "keycloak/credentials/postgresql",
            {"username": "keycloak", "password": Generated("alphanumeric-password")},
        ),
    ]


def _vso() -> list[ReconciliationTarget]:
    return [
        ReconciliationTarget(
            TargetKind.SECRETS_ENGINE,
            TRANSIT_MOUNT,
            {"type": "transit", "description": "encrypt secrets in transit"},
        ),
        ReconciliationTarget(TargetKind.TRANSIT_KEY, TRANSIT_KEY, {"mount": TRANSIT_MOUNT}),
        ReconciliationTarget(TargetKind.ACL_POLICY, "vso-auth", {"policy": TRANSIT_POLICY}),
        kubernetes_role(
            "vso-auth",
            [*RELEASES, "vso-auth"],
            service_account="vault-secrets-operator",
            namespace="vault-secrets-operator",
            period="120",
        ),
    ]


APPLICATIONS = {
    "gitlab": _gitlab,
    "keycloak": _keycloak,
    "vso": _vso,
}


def application_targets(application: str) -> list[ReconciliationTarget]:
    """Targets that prepare Vault for an application.

    Raises:
        KeyError: If the application is unknown.

    """
    return APPLICATIONS[application]()
