from dataclasses import dataclass

from outfit_tracker.events import EventBus
from outfit_tracker.host import InMemoryHost
from outfit_tracker.identity import InstanceIdentityResolver
from outfit_tracker.macros import MacroResolver
from outfit_tracker.managers import BotOutfitManager, UserOutfitManager
from outfit_tracker.persistence import DataManager
from outfit_tracker.store import OutfitStore


@dataclass
class OutfitDeps:
    """Wired runtime components.

    Built once by main.create_deps() (or by tests) and passed to the
    tracker. Every component shares the same store and bus.
    """

    store: OutfitStore
    bus: EventBus
    host: InMemoryHost
    data_manager: DataManager
    macros: MacroResolver
    resolver: InstanceIdentityResolver
    bot_manager: BotOutfitManager
    user_manager: UserOutfitManager
