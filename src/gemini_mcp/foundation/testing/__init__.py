"""Test doubles for the upstream client."""

from .fake import FakeUpstream, Outcome, UpstreamCall, failure

__all__ = ["FakeUpstream", "Outcome", "UpstreamCall", "failure"]
