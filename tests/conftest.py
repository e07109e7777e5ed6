"""Pytest configuration and fixtures."""

import json
from pathlib import Path

import pytest

from codebakers.workspace import Workspace


STRIPE_AGENT = """# Stripe Payments Agent

> Subscriptions, webhooks and the customer portal.

## Role

You are a senior payments engineer. You own checkout, billing and
webhook handling.

## Triggers

- stripe
- payments
- subscription billing

## Anti-Patterns

- Trusting the client for the price
- Processing a webhook without verifying its signature

## Code Snippets

```ts
const event = stripe.webhooks.constructEvent(body, sig, secret);
```

## Checklist

- [x] Webhook signature verified
- [ ] Idempotency keys on every charge
"""

CHATBOT_AGENT = """# Chatbot Agent

## Role

Designs conversational flows.

## When to use

chatbot, voice agent, vapi
"""


@pytest.fixture
def stripe_agent() -> str:
    """A complete agent document."""
    return STRIPE_AGENT


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """An initialized workspace with two agents and no projects."""
    ws = Workspace.initialize(tmp_path, name="acme")
    agents_dir = ws.config.workspace.agents_path(tmp_path)
    (agents_dir / "stripe-payments.md").write_text(STRIPE_AGENT)
    (agents_dir / "chatbot.md").write_text(CHATBOT_AGENT)
    return Workspace.open(tmp_path)


@pytest.fixture
def sample_scores() -> dict:
    """A valid scores document with one project."""
    return {
        "schema_version": "1.0",
        "updated_at": "2026-09-30T12:00:00",
        "weights": {
            "code_quality": 0.25,
            "test_coverage": 0.25,
            "security": 0.2,
            "performance": 0.15,
            "accessibility": 0.15,
        },
        "projects": {
            "acme-portal": {
                "name": "Acme Portal",
                "scores": {
                    "code_quality": 80,
                    "test_coverage": 70,
                    "security": 90,
                    "performance": 60,
                    "accessibility": 80,
                },
                "overall": 76.5,
                "bugs": {
                    "total": 5,
                    "open": 2,
                    "resolved": 3,
                    "by_severity": {"critical": 1, "high": 1, "medium": 0, "low": 0},
                },
                "agents": ["stripe-payments"],
                "updated_at": "2026-09-30T12:00:00",
                "history": [
                    {"date": "2026-06-15", "overall": 72.0, "scores": {}, "bugs_open": 4},
                    {"date": "2026-09-30", "overall": 76.5, "scores": {}, "bugs_open": 2},
                ],
            }
        },
    }


@pytest.fixture
def scores_file(workspace: Workspace, sample_scores: dict) -> Path:
    """Write sample_scores into the workspace's scores.json."""
    workspace.scores_path.write_text(json.dumps(sample_scores, indent=2))
    return workspace.scores_path
