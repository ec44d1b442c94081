"""Conversation events -> outfit state.

OutfitTracker reacts to what happens in the host conversation (chat switched,
first reply received, first reply swiped, chat reset) by re-deriving the
instance id and pointing both outfit managers at it. Any text rendered for
the same event is substituted only after that id is settled.
"""

import inspect
import logging
from collections.abc import Callable
from typing import Any

from outfit_tracker._normalize import normalize
from outfit_tracker.characters import get_or_create_character_id
from outfit_tracker.deps import OutfitDeps
from outfit_tracker.events import OutfitEvent
from outfit_tracker.host import ChatMessage
from outfit_tracker.identity import first_character_message

logger = logging.getLogger(__name__)


class OutfitTracker:
    def __init__(self, deps: OutfitDeps):
        self.deps = deps
        self._first_message_text: str | None = None
        self._updating = False

    def _character_messages(self) -> list[ChatMessage]:
        return [m for m in self.deps.host.messages() if not m.is_user and not m.is_system]

    def _save_managers(self) -> None:
        for manager in (self.deps.bot_manager, self.deps.user_manager):
            if manager.has_target():
                manager.save_outfit()

    async def refresh_instance_id(self) -> str | None:
        """Derive the instance id from the first character message and apply it.

        Returns:
            The new current instance id, or None when the conversation has no
            character message yet (outfits then read as empty).
        """
        deps = self.deps
        message = first_character_message(deps.host.messages())
        if message is None:
            instance_id = None
        else:
            values = deps.store.collect_outfit_values(deps.bot_manager.character_id)
            instance_id = await deps.resolver.resolve(normalize(message.text, values))
            logger.debug(f"Instance id {instance_id} for first message of {message.name}")

        deps.store.set_current_instance_id(instance_id)
        deps.bot_manager.set_outfit_instance_id(instance_id)
        deps.user_manager.set_outfit_instance_id(instance_id)
        return instance_id

    async def update_for_current_character(self) -> None:
        if self._updating:
            logger.warning("Already updating for current character, skipping")
            return
        self._updating = True
        try:
            deps = self.deps
            self._save_managers()
            character = deps.host.current_character()
            if character is None:
                deps.store.set_current_character(None)
                deps.bot_manager.set_character("Unknown", None)
            else:
                character_id = get_or_create_character_id(deps.host, character)
                deps.store.set_current_character(character_id)
                deps.bot_manager.set_character(character.name, character_id)
            await self.refresh_instance_id()
        finally:
            self._updating = False

    async def handle_chat_changed(self) -> bool:
        """Re-resolve when the conversation's first character message differs. Returns True if it did."""
        message = first_character_message(self.deps.host.messages())
        text = message.text if message else None
        if text is not None and text == self._first_message_text:
            logger.debug("Chat changed but first message unchanged, skipping update")
            return False
        self._first_message_text = text
        await self.update_for_current_character()
        self.deps.macros.clear_cache()
        return True

    async def handle_message_received(self, message: ChatMessage) -> bool:
        """Only the first character reply of a conversation moves the instance."""
        character_messages = self._character_messages()
        if message.is_user or len(character_messages) != 1:
            return False
        self._first_message_text = character_messages[0].text
        self._save_managers()
        await self.update_for_current_character()
        return True

    async def handle_message_swiped(self, index: int) -> bool:
        messages = self.deps.host.messages()
        if index < 0 or index >= len(messages):
            return False
        self.deps.macros.clear_cache()
        character_messages = self._character_messages()
        if not character_messages or messages[index] is not character_messages[0]:
            return False

        self._first_message_text = character_messages[0].text
        self._save_managers()
        self.deps.store.save_state()
        await self.update_for_current_character()
        self.deps.bus.emit(OutfitEvent.OUTFIT_DATA_LOADED)
        return True

    async def handle_chat_reset(self, reset: Callable[[], Any] | None = None) -> None:
        """Keep outfits across a chat reset and put on default outfits where one is set.

        Args:
            reset: Host callback that performs the reset; may be async.
        """
        deps = self.deps
        bot_instance = deps.bot_manager.instance_id
        user_instance = deps.user_manager.instance_id
        self._save_managers()
        deps.store.save_state()

        if reset is not None:
            result = reset()
            if inspect.isawaitable(result):
                await result

        await self.update_for_current_character()

        if bot_instance and not deps.bot_manager.apply_default_outfit_after_reset():
            deps.bot_manager.load_outfit()
        if user_instance and not deps.user_manager.apply_default_outfit_after_reset():
            deps.user_manager.load_outfit()

        deps.store.save_state()
        deps.bus.emit(OutfitEvent.CHAT_CLEARED)

    async def render(self, text: str) -> str:
        """Substitute outfit macros in text for the current conversation."""
        await self.refresh_instance_id()
        return self.deps.macros.substitute_all(text)

    def outfit_prompt(self) -> str:
        return self.deps.macros.build_outfit_prompt(self.deps.bot_manager, self.deps.user_manager)
