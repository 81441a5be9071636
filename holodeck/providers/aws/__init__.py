"""AWS provider for Holodeck.

Example:
    from holodeck.config import load_environment
    from holodeck.providers.aws import AWSProvider

    env = load_environment(Path("env.yaml"))
    provider = AWSProvider(env)
    provider.create()
    ...
    provider.delete()
"""

from holodeck.providers.aws.cleanup import VPCCleaner
from holodeck.providers.aws.provider import AWSProvider

__all__ = ["AWSProvider", "VPCCleaner"]
