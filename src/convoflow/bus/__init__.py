"""Publish/subscribe bus: publishing, push envelopes and pull subscriptions."""
