from typing import Callable, Dict, List, Any
import asyncio

from chorequest.services.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Simple async pub/sub event bus for engine events.

    The engine publishes only after a transaction commits, so listeners
    (notifications, realtime push) never see a payout that rolled back.

    Events:
        - quest_approved: {quest_id, character_id, rewards, streak}
        - character_leveled_up: {character_id, previous_level, new_level}
        - quests_expired: {family_id, quest_ids}
        - boss_rewards_distributed: {boss_battle_id, participants}
    """

    _listeners: Dict[str, List[Callable[[Dict[str, Any]], Any]]] = {}

    @classmethod
    def subscribe(cls, event_name: str, callback: Callable[[Dict[str, Any]], Any]):
        cls._listeners.setdefault(event_name, []).append(callback)

    @classmethod
    def unsubscribe(cls, event_name: str, callback: Callable[[Dict[str, Any]], Any]):
        listeners = cls._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)

    @classmethod
    def clear(cls):
        cls._listeners = {}

    @classmethod
    async def publish(cls, event_name: str, data: Dict[str, Any]):
        listeners = list(cls._listeners.get(event_name, []))
        for listener in listeners:
            # Listener errors never reach the publisher.
            try:
                if asyncio.iscoroutinefunction(listener):
                    await listener(data)
                else:
                    listener(data)
            except Exception as e:
                logger.error(f"[EventBus] Error in listener for {event_name}: {e}", exc_info=True)
