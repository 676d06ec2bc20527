"""
Inbox triage service.

A bounded, crash-recoverable email triage pipeline that:
- Polls a mailbox for new messages
- Admits them into a bounded queue with a drop-oldest overload policy
- Classifies them with an LLM through a fixed-size worker pool
- Sends an SMS when a decision asks for one
- Keeps a persistent ledger of outcomes plus throughput and health stats
"""

__version__ = "1.0.0"
