"""Work dispatch gateway: hands tasks to channel executors."""

from typing import Any, Dict, Optional

from outreach_engine.core.circuit_breaker import CircuitBreakerConfig, ServiceClient
from outreach_engine.core.config import Settings, get_settings
from outreach_engine.core.logging import get_logger
from outreach_engine.models.task import TASK_DISPATCH_CHANNELS, DispatchChannel, Task

logger = get_logger(__name__)


def build_executor_clients(settings: Optional[Settings] = None) -> Dict[DispatchChannel, ServiceClient]:
    """One circuit-protected client per dispatch channel."""
    settings = settings or get_settings()
    breaker = CircuitBreakerConfig(
        failure_threshold=settings.circuit_breaker_failure_threshold,
        timeout=settings.circuit_breaker_timeout_seconds,
    )
    urls = {
        DispatchChannel.EMAIL: settings.email_executor_url,
        DispatchChannel.PHONE: settings.phone_executor_url,
        DispatchChannel.SMS: settings.sms_executor_url,
        DispatchChannel.RESEARCH: settings.research_executor_url,
        DispatchChannel.NOTIFICATIONS: settings.notification_url,
    }
    return {
        channel: ServiceClient(
            service_name=f"{channel.value}_executor",
            base_url=url,
            timeout_seconds=settings.executor_timeout_seconds,
            circuit_breaker_config=breaker,
        )
        for channel, url in urls.items()
    }


class WorkDispatchGateway:
    """Routes an assigned task by kind to its executor queue."""

    def __init__(self, clients: Dict[DispatchChannel, ServiceClient]):
        missing = set(DispatchChannel) - set(clients)
        if missing:
            raise ValueError(f"No executor client for channels: {sorted(c.value for c in missing)}")
        self.clients = clients

    @staticmethod
    def channel_for(task: Task) -> DispatchChannel:
        return TASK_DISPATCH_CHANNELS[task.type]

    async def dispatch(self, task: Task) -> Dict[str, Any]:
        """
        Hand a task to its executor.

        Raises:
            DispatchError: Executor rejected the task or is unavailable
        """
        channel = self.channel_for(task)
        client = self.clients[channel]
        logger.info(
            "Dispatching task",
            task_id=task.id,
            task_type=task.type.value,
            channel=channel.value,
            agent_id=task.assigned_agent_id,
        )
        return await client.post(
            "/tasks",
            json={
                "task": task.model_dump(mode="json"),
                "channel": channel.value,
            },
        )

    def get_status(self) -> Dict[str, Any]:
        return {channel.value: client.get_circuit_status() for channel, client in self.clients.items()}

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()
