"""Adapters that turn source payloads into ``CandidateTransaction`` lists."""
