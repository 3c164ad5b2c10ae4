"""Location-aware proximity service: obfuscated tracking, nearby discovery and access policy."""
