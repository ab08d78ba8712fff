"""
auth — Caller authentication for the OAuth broker.

Provides:
  • ``Authenticator`` interface and the Kubernetes TokenReview implementation
  • Credential extraction from ``k8s_token`` or the ``Authorization`` header
"""
