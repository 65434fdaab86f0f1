"""Outreach Coordination Service for payment collections

This service coordinates multi-channel customer outreach:
- Registers email, phone, SMS and research agents
- Matches outreach tasks to the best available agent
- Retries failed tasks and drains the pending queue
- Builds customer behavior, risk and recommendation context
- Prioritizes new tasks from customer risk
"""

__version__ = "1.0.0"
