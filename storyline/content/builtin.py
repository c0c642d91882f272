"""Content that ships with the engine.

Used when no content directory is present (tests, CI, a fresh checkout). The node-end
incoming list names the branches that actually lead there so the tree passes
GraphStore validation.
"""

from __future__ import annotations

from storyline.api.models import (
    AccuracyEndingCondition,
    AccuracyThresholdCondition,
    Branch,
    BranchingTree,
    ChoiceEndingCondition,
    CompletionEndingCondition,
    Ending,
    EndingCollection,
    EndingRewards,
    EndingTrigger,
    EndingType,
    MistakesEndingCondition,
    Narrative,
    NarrativeChoice,
    NarrativeGenre,
    NarrativeSection,
    NarrativeStructure,
    NarrativeTemplate,
    Node,
    NodeKind,
    PlotPoint,
    PlotPointPrompt,
    Rarity,
    TimeSpentEndingCondition,
    WpmEndingCondition,
    WpmThresholdCondition,
)

SAMPLE_TREE_ID = "tree-sample"
SAMPLE_NARRATIVE_ID = "narrative-library-mystery"


def sample_tree() -> BranchingTree:
    nodes = (
        Node(
            id="node-start",
            kind=NodeKind.start,
            title="The Crossroads",
            content="You stand at a crossroads. Three paths lie before you, each leading to a different adventure.",
            outgoing=("branch-forest", "branch-mountain", "branch-city"),
            word_count=20,
            estimated_time=12,
        ),
        Node(
            id="node-forest",
            kind=NodeKind.content,
            title="The Enchanted Forest",
            content=(
                "Tall trees surround you, their leaves whispering ancient secrets. "
                "A friendly fox appears, offering to guide you."
            ),
            outgoing=("branch-follow-fox", "branch-explore-alone"),
            incoming=("branch-forest",),
            word_count=25,
            estimated_time=15,
        ),
        Node(
            id="node-mountain",
            kind=NodeKind.content,
            title="The Misty Mountain",
            content=(
                "The mountain path is steep but beautiful. "
                "You notice a cave entrance and hear melodic sounds from within."
            ),
            outgoing=("branch-enter-cave", "branch-continue-climb"),
            incoming=("branch-mountain",),
            word_count=22,
            estimated_time=13,
        ),
        Node(
            id="node-city",
            kind=NodeKind.content,
            title="The Bustling City",
            content="Colorful buildings line the streets. A friendly robot approaches, asking if you need assistance.",
            outgoing=("branch-accept-help", "branch-explore-independently"),
            incoming=("branch-city",),
            word_count=20,
            estimated_time=12,
        ),
        Node(
            id="node-end",
            kind=NodeKind.end,
            title="Journey Complete",
            content="Your adventure comes to a satisfying end. You have learned much and made wonderful memories.",
            incoming=(
                "branch-follow-fox",
                "branch-explore-alone",
                "branch-enter-cave",
                "branch-continue-climb",
                "branch-accept-help",
                "branch-explore-independently",
            ),
            word_count=18,
            estimated_time=11,
        ),
    )

    branches = (
        Branch(
            id="branch-forest",
            name="Forest Path",
            description="Take the path through the enchanted forest",
            from_node="node-start",
            to_node="node-forest",
            priority=1,
            tags=("nature", "easy"),
        ),
        Branch(
            id="branch-mountain",
            name="Mountain Path",
            description="Climb the misty mountain",
            from_node="node-start",
            to_node="node-mountain",
            conditions=(WpmThresholdCondition(id="cond-wpm-40", description="Type at least 40 WPM", min_wpm=40),),
            priority=2,
            tags=("adventure", "medium"),
        ),
        Branch(
            id="branch-city",
            name="City Path",
            description="Explore the bustling city",
            from_node="node-start",
            to_node="node-city",
            priority=1,
            tags=("urban", "easy"),
        ),
        Branch(
            id="branch-follow-fox",
            name="Follow the Fox",
            description="Trust the friendly fox to guide you",
            from_node="node-forest",
            to_node="node-end",
            priority=1,
            tags=("trust", "friendship"),
        ),
        Branch(
            id="branch-explore-alone",
            name="Explore Alone",
            description="Venture deeper into the forest independently",
            from_node="node-forest",
            to_node="node-end",
            conditions=(
                AccuracyThresholdCondition(
                    id="cond-accuracy-85",
                    description="Type with 85% accuracy or higher",
                    min_accuracy=85,
                    required=True,
                ),
            ),
            priority=2,
            tags=("independence", "challenge"),
        ),
        Branch(
            id="branch-enter-cave",
            name="Enter the Cave",
            description="Investigate the mysterious sounds",
            from_node="node-mountain",
            to_node="node-end",
            priority=1,
            tags=("mystery", "exploration"),
        ),
        Branch(
            id="branch-continue-climb",
            name="Continue Climbing",
            description="Push forward to the mountain peak",
            from_node="node-mountain",
            to_node="node-end",
            priority=1,
            tags=("perseverance", "achievement"),
        ),
        Branch(
            id="branch-accept-help",
            name="Accept Help",
            description="Let the robot guide you through the city",
            from_node="node-city",
            to_node="node-end",
            priority=1,
            tags=("cooperation", "assistance"),
        ),
        Branch(
            id="branch-explore-independently",
            name="Explore Independently",
            description="Discover the city on your own terms",
            from_node="node-city",
            to_node="node-end",
            priority=1,
            tags=("independence", "discovery"),
        ),
    )

    return BranchingTree(
        id=SAMPLE_TREE_ID,
        name="The Adventure Begins",
        description="A branching adventure with multiple paths and endings",
        start_node_id="node-start",
        end_node_ids=("node-end",),
        nodes=nodes,
        branches=branches,
        tags=("adventure", "branching", "beginner-friendly"),
    )


def sample_narrative() -> Narrative:
    library = "City Library"
    morgan = "char-morgan-librarian"
    dakota = "char-dakota-artist"

    sections = [
        NarrativeSection(
            id="section-1",
            plot_point=PlotPoint.exposition,
            title="The Library",
            content=(
                "Morgan loved working at the library. The quiet atmosphere, the smell of books, and the "
                "systematic organization of knowledge brought comfort and joy. Every morning followed the same "
                "routine: unlock the door at 8:00 AM, turn on the soft lights, and check that all books were in "
                "their proper places. Today would be special, though Morgan didn't know it yet."
            ),
            character_ids=[morgan],
            location=library,
            mood="calm",
            word_count=67,
            estimated_typing_time=40,
            order=1,
        ),
        NarrativeSection(
            id="section-2",
            plot_point=PlotPoint.inciting_incident,
            title="The Mysterious Book",
            content=(
                "While shelving returns, Morgan discovered a book that wasn't in the catalog system. It was old, "
                "leather-bound, with no title on the spine. Opening it carefully, Morgan found beautiful "
                "handwritten pages filled with stories and illustrations. This mystery needed solving. Who left "
                "this book? Where did it come from? Morgan's love for organization and detail would help uncover "
                "the truth."
            ),
            character_ids=[morgan],
            location=library,
            mood="curious",
            word_count=73,
            estimated_typing_time=44,
            order=2,
        ),
        NarrativeSection(
            id="section-3",
            plot_point=PlotPoint.rising_action,
            title="Research Begins",
            content=(
                "Morgan began investigating. First, check the security footage. Then, examine the book's binding "
                "and paper type. Finally, research similar bookbinding techniques online. Each clue led to another "
                "discovery. The book appeared to be handmade, recently, by someone with great care and skill. But "
                "why leave it anonymously? Morgan felt excited by the puzzle, though careful to maintain the "
                "library's quiet atmosphere."
            ),
            character_ids=[morgan],
            location=library,
            mood="excited",
            word_count=78,
            estimated_typing_time=47,
            order=3,
            choices=[
                NarrativeChoice(
                    id="choice-1",
                    text="Ask library visitors about the book",
                    leads_to_section_id="section-4a",
                    description="Talk to people who might have seen something",
                ),
                NarrativeChoice(
                    id="choice-2",
                    text="Continue researching independently",
                    leads_to_section_id="section-4b",
                    description="Focus on examining the book itself",
                ),
            ],
        ),
        NarrativeSection(
            id="section-4a",
            plot_point=PlotPoint.climax,
            title="A Familiar Face",
            content=(
                "Morgan decided to ask regular library visitors. On the third person, there was success! A young "
                'artist named Dakota admitted to leaving the book. "I wanted to share stories," Dakota explained, '
                '"but I was nervous about people knowing it was me." Morgan understood that feeling. Together, '
                "they created a plan: a community story project where anyone could contribute anonymously if they "
                "wished."
            ),
            character_ids=[morgan, dakota],
            location=library,
            mood="happy",
            word_count=82,
            estimated_typing_time=49,
            order=4,
        ),
        NarrativeSection(
            id="section-4b",
            plot_point=PlotPoint.climax,
            title="The Signature",
            content=(
                "Deep in the book's final pages, Morgan found a small signature hidden in an illustration: Dakota. "
                "A local artist who visited the library every week! The next time Dakota came in, Morgan "
                'approached gently. "Your book is beautiful," Morgan said quietly. Dakota smiled with relief. '
                '"I hoped someone who appreciated stories would find it." They became friends, bonded by their '
                "love of creativity and quiet spaces."
            ),
            character_ids=[morgan, dakota],
            location=library,
            mood="happy",
            word_count=82,
            estimated_typing_time=49,
            order=4,
        ),
        NarrativeSection(
            id="section-5",
            plot_point=PlotPoint.resolution,
            title="New Beginnings",
            content=(
                "The mysterious book found a special place in the library's local authors section. Morgan created "
                "a new system for community-contributed works, organized by theme and style. The library felt even "
                "more like home now, a place where quiet people could share their voices in comfortable ways. "
                "Morgan learned that sometimes the best mysteries lead to unexpected friendships."
            ),
            character_ids=[morgan, dakota],
            location=library,
            mood="content",
            word_count=75,
            estimated_typing_time=45,
            order=5,
        ),
    ]

    return Narrative(
        id=SAMPLE_NARRATIVE_ID,
        title="The Library Mystery",
        description="A heartwarming mystery about unexpected connections",
        genre=NarrativeGenre.mystery,
        structure=NarrativeStructure.branching,
        sections=sections,
        start_section_id="section-1",
        tags=["mystery", "friendship", "library", "autism-rep"],
        themes=["friendship", "acceptance", "mystery-solving", "quiet-strength"],
        difficulty=4,
    )


def sample_endings() -> EndingCollection:
    # Catalog order matters: ties and the common fallback follow it.
    endings = [
        Ending(
            id="ending-friendship",
            title="New Friendships",
            ending_type=EndingType.happy,
            trigger=EndingTrigger.choice_based,
            content=(
                "The mystery was solved, and more importantly, a beautiful friendship was formed. Morgan and "
                "Dakota became regular companions, sharing quiet moments in the library and creative projects "
                "together."
            ),
            epilogue="Their friendship inspired others in the library to share their own creative works.",
            conditions=[
                ChoiceEndingCondition(
                    id="cond-friendly-choices",
                    description="Made friendly choices throughout",
                    choice_ids=("choice-talk-kindly", "choice-share-interest"),
                    weight=10,
                ),
            ],
            required_choices=["choice-1"],
            rewards=EndingRewards(
                achievement_id="achievement-true-friend",
                bonus_points=100,
                unlocked_content=["advanced-friendship-stories"],
            ),
            rarity=Rarity.common,
            tags=["friendship", "positive", "heartwarming"],
            next_steps=["Try the Continuing Friendships storyline", "Create your own friendship story"],
        ),
        Ending(
            id="ending-mystery-master",
            title="Master Detective",
            ending_type=EndingType.triumphant,
            trigger=EndingTrigger.performance_based,
            content=(
                "Not only did you solve the mystery with exceptional skill, but your attention to detail and "
                "logical thinking impressed everyone. The library appointed you its official Mystery Consultant."
            ),
            epilogue="People from neighboring libraries sought your help with their own mysteries.",
            conditions=[
                AccuracyEndingCondition(
                    id="cond-high-accuracy",
                    description="Maintained 95% accuracy or higher",
                    min_accuracy=95,
                    weight=8,
                ),
                WpmEndingCondition(id="cond-good-speed", description="Typed at 50 WPM or faster", min_wpm=50, weight=7),
            ],
            min_accuracy=95,
            min_wpm=50,
            min_completion_percentage=100,
            rewards=EndingRewards(
                achievement_id="achievement-master-detective",
                bonus_points=250,
                unlocked_content=["advanced-mystery-pack", "detective-tools"],
            ),
            rarity=Rarity.rare,
            tags=["achievement", "skill-based", "challenging"],
            next_steps=["Attempt harder mystery narratives", "Try speed-typing challenges"],
        ),
        Ending(
            id="ending-quiet-resolution",
            title="Peaceful Understanding",
            ending_type=EndingType.peaceful,
            trigger=EndingTrigger.completion_based,
            content=(
                "The mystery resolved itself naturally, in its own time. You learned that not every puzzle needs "
                "to be rushed, and sometimes the journey matters more than the destination."
            ),
            epilogue="You kept visiting the library, appreciating its peaceful atmosphere.",
            conditions=[
                TimeSpentEndingCondition(
                    id="cond-took-time",
                    description="Took time to appreciate the journey",
                    min_seconds=300,
                    weight=6,
                ),
                MistakesEndingCondition(
                    id="cond-few-mistakes",
                    description="Made fewer than 20 mistakes",
                    max_mistakes=20,
                    weight=5,
                ),
            ],
            rewards=EndingRewards(achievement_id="achievement-mindful-typist", bonus_points=150),
            rarity=Rarity.uncommon,
            tags=["peaceful", "mindful", "calm"],
            next_steps=["Explore slower-paced narratives", "Practice mindful typing techniques"],
        ),
        Ending(
            id="ending-creative-collaboration",
            title="Creative Partnership",
            ending_type=EndingType.happy,
            trigger=EndingTrigger.combination,
            content=(
                "The mystery brought together two creative minds. Morgan and Dakota decided to curate a special "
                "collection of community stories in the library."
            ),
            epilogue="The community story collection became the library's most popular section.",
            conditions=[
                CompletionEndingCondition(
                    id="cond-balanced-approach",
                    description="Completed all optional content",
                    min_percentage=100,
                    weight=9,
                ),
                ChoiceEndingCondition(
                    id="cond-collaborative-choices",
                    description="Made collaborative choices",
                    choice_ids=("choice-work-together", "choice-combine-ideas"),
                    weight=8,
                ),
            ],
            required_choices=["choice-4a", "choice-community-project"],
            min_completion_percentage=100,
            rewards=EndingRewards(
                achievement_id="achievement-creative-collaboration",
                bonus_points=200,
                unlocked_content=["collaboration-stories", "duo-typing-exercises"],
            ),
            rarity=Rarity.uncommon,
            tags=["collaboration", "creativity", "inspiring"],
            next_steps=["Create a story with a friend", "Explore creative writing prompts"],
        ),
        Ending(
            id="ending-secret-perfectionist",
            title="The Perfect Solution",
            ending_type=EndingType.surprising,
            trigger=EndingTrigger.achievement_based,
            content=(
                "Your perfect performance unlocked a secret. The mysterious book revealed hidden pages containing "
                "an ancient technique for mindful, perfect typing."
            ),
            epilogue="You went on to teach others that mastery means being present with each keystroke.",
            conditions=[
                AccuracyEndingCondition(
                    id="cond-perfect-accuracy",
                    description="100% accuracy",
                    min_accuracy=100,
                    weight=15,
                ),
                WpmEndingCondition(id="cond-excellent-speed", description="60+ WPM", min_wpm=60, weight=10),
                CompletionEndingCondition(
                    id="cond-perfect-completion",
                    description="100% completion with all secrets found",
                    min_percentage=100,
                    weight=10,
                ),
            ],
            min_accuracy=100,
            min_wpm=60,
            min_completion_percentage=100,
            required_achievements=["achievement-no-mistakes", "achievement-speed-demon"],
            unlock_message="SECRET ENDING UNLOCKED!",
            rewards=EndingRewards(
                achievement_id="achievement-perfectionist",
                bonus_points=500,
                unlocked_content=["secret-typing-techniques", "master-level-content"],
            ),
            rarity=Rarity.secret,
            tags=["secret", "perfect", "mastery", "achievement"],
            next_steps=["Share your technique with the community", "Become a typing mentor"],
        ),
        Ending(
            id="ending-continuing-journey",
            title="The Journey Continues",
            ending_type=EndingType.open_ended,
            trigger=EndingTrigger.completion_based,
            content=(
                "The mystery of the book was just the beginning. Every ending is also a new beginning, and the "
                "library holds countless more stories waiting to be discovered."
            ),
            epilogue="You left the library that day with a smile, ready for the next adventure.",
            conditions=[
                CompletionEndingCondition(
                    id="cond-completed-story",
                    description="Completed the main story",
                    min_percentage=80,
                    weight=5,
                ),
            ],
            min_completion_percentage=80,
            rewards=EndingRewards(bonus_points=100, unlocked_content=["next-chapter-preview"]),
            rarity=Rarity.common,
            tags=["open-ended", "hopeful", "continuing"],
            next_steps=["Revisit this story for different endings", "Create your own continuing story"],
        ),
    ]
    return EndingCollection(narrative_id=SAMPLE_NARRATIVE_ID, endings=endings)


def _prompts(*rows: tuple[PlotPoint, str, int]) -> list[PlotPointPrompt]:
    return [PlotPointPrompt(plot_point=pp, prompt=prompt, suggested_length=n) for pp, prompt, n in rows]


def templates() -> list[NarrativeTemplate]:
    return [
        NarrativeTemplate(
            id="template-heros-journey",
            name="Hero's Journey",
            description="Classic adventure structure",
            genre=NarrativeGenre.adventure,
            structure=NarrativeStructure.linear,
            plot_points=_prompts(
                (PlotPoint.exposition, "Introduce the hero in their ordinary world", 100),
                (PlotPoint.inciting_incident, "The call to adventure arrives", 150),
                (PlotPoint.rising_action, "The hero faces challenges and grows", 200),
                (PlotPoint.climax, "The hero faces their greatest challenge", 150),
                (PlotPoint.falling_action, "The aftermath of victory", 100),
                (PlotPoint.resolution, "Return to ordinary world, transformed", 100),
            ),
        ),
        NarrativeTemplate(
            id="template-mystery",
            name="Mystery Investigation",
            description="Solve a mystery step by step",
            genre=NarrativeGenre.mystery,
            structure=NarrativeStructure.branching,
            plot_points=_prompts(
                (PlotPoint.exposition, "Introduce the mystery and main characters", 120),
                (PlotPoint.inciting_incident, "The mystery deepens", 100),
                (PlotPoint.rising_action, "Gather clues and investigate", 180),
                (PlotPoint.climax, "Confront the truth", 140),
                (PlotPoint.resolution, "Mystery solved, lessons learned", 100),
            ),
        ),
        NarrativeTemplate(
            id="template-slice-of-life",
            name="Daily Adventure",
            description="Meaningful moments in everyday life",
            genre=NarrativeGenre.slice_of_life,
            structure=NarrativeStructure.episodic,
            plot_points=_prompts(
                (PlotPoint.exposition, "A normal day begins", 80),
                (PlotPoint.inciting_incident, "Something unexpected happens", 90),
                (PlotPoint.rising_action, "Navigate the situation", 120),
                (PlotPoint.resolution, "Find meaning in the moment", 80),
            ),
        ),
    ]
