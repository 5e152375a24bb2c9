"""Create a demo campaign for development/testing."""

from .persistence import CampaignStorage
from .store import StoryMemory

DEMO_SLUG = "riverside-demo"
DEMO_TITLE = "Riverside Village Demo"


def build_demo_memory() -> StoryMemory:
    """A small campaign with a grudge, a curse and a few friendly faces."""
    memory = StoryMemory()

    aldric = memory.create_entity("npc", "Baron Aldric")
    aldric.description = "Ruthless lord of the river valley"
    memory.add_alias(aldric.id, "the Baron")
    riverside = memory.create_entity("location", "Riverside Village")
    riverside.description = "A fishing village on the baron's lands"
    tom = memory.create_entity("npc", "Old Tom")
    tom.description = "Retired adventurer who runs the Rusty Anchor"
    guards = memory.create_entity("organization", "Town Guards")
    lair = memory.create_entity("location", "Dragon's Lair")
    quest = memory.create_entity("quest", "The Baron's Debt")
    quest.description = "Find out why the baron is squeezing the village"

    memory.add_fact(
        aldric.id, "Baron Aldric rules the valley from Greystone Keep",
        "backstory", "world_building",
    )
    memory.add_fact(
        tom.id, "Old Tom lost an eye to a wyvern twenty years ago",
        "appearance", "npc_dialogue",
    )
    memory.add_fact(
        lair.id, "A red dragon nests in the caves above the pass",
        "location", "dm_narration",
    )
    memory.add_fact(
        guards.id, "The town guards answer to Baron Aldric",
        "relationship", "world_building", mentioned=[aldric.id],
    )
    memory.add_relationship(guards.id, aldric.id, "employee", description="sworn to his service")
    memory.add_relationship(tom.id, riverside.id, "lives_at")

    memory.advance_turn()
    memory.add_fact(
        aldric.id, "The player humiliated Baron Aldric in front of his court",
        "event", "player_action",
    )
    memory.add_relationship(aldric.id, quest.id, "created")
    memory.register_consequence(
        "Player enters Riverside Village",
        "Town guards attempt to arrest the player for crimes against the baron",
        "major",
        ["Town Guards", "Baron Aldric", "Riverside Village"],
    )
    memory.register_consequence(
        "Player returns to the Dragon's Lair",
        "The dragon remembers the stolen egg and attacks on sight",
        "critical",
        ["Dragon's Lair"],
    )
    memory.register_consequence(
        "Player tries to sleep",
        "Nightmares from the witch's curse prevent a restful night",
        "moderate",
        expires_in_turns=10,
    )
    return memory


def create_demo_data(storage: CampaignStorage) -> StoryMemory:
    """Overwrite the demo campaign with fresh demo data."""
    storage.delete(DEMO_SLUG)
    memory = build_demo_memory()
    storage.save(DEMO_SLUG, memory, title=DEMO_TITLE)
    return memory
