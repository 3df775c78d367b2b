"""
Integrity boundary for the EVV backend.

Design intent:
- Canonicalize visit versions into stable bytes an auditor can reproduce.
- Link every committed version to its predecessor through a SHA-256 chain.
- Support hash-only and keyed-signature deployments side by side.
"""
