"""Bridges to external collaborators: signing, registry credentials, container runtime."""
