"""
connectors — OAuth broker core.

Handles:
  • Signed OAuth ``state`` (anonymous → authenticated) across the redirect
  • Per-provider authorize / callback flow (code → token exchange)
  • Token storage with notification of the owning SPIAccessToken
  • Direct token upload

Each provider (GitHub, Quay, …) is one ``ProviderDefinition`` in the registry.
"""
