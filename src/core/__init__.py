"""Core domain package for linkbridge.

Core contains link tracking, forwarding, reaction mirroring, and session
lifecycle logic without any Discord, Telegram, or storage-specific code,
keeping the business logic portable.
"""
