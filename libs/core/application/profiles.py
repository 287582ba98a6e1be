"""Per-scenario prompts and magnitude thresholds."""

from dataclasses import dataclass

from libs.core.domain.entities import Scenario


@dataclass(frozen=True)
class ScenarioProfile:
    """Read-only monitoring configuration for one scenario."""

    scenario: Scenario
    name: str
    triage_prompt: str
    detailed_prompt: str
    motion_boost_threshold: float
    audio_boost_threshold: float


_CONCERN_SCALE = """Concern Levels:
- NONE: {none}
- LOW: {low}
- MEDIUM: {medium}
- HIGH: {high}
- CRITICAL: {critical}

Provide:
1. Concern level (NONE/LOW/MEDIUM/HIGH/CRITICAL)
2. What you observe
3. Recommended action"""


PET_PROFILE = ScenarioProfile(
    scenario=Scenario.PET,
    name="Pet monitoring",
    triage_prompt="""You are a pet monitoring assistant. Quickly check this image for concerns.

- Pet visible and behaving normally -> "NO CONCERN - Pet is fine"
- Pet eating, drinking or resting -> "NO CONCERN - Normal activity"
- Pet not visible -> "LOW CONCERN - Pet not in frame"
- Pet in an unusual posture -> "MEDIUM CONCERN - Unusual posture"
- Pet appears distressed -> "HIGH CONCERN - Pet may be in distress"
- Pet appears injured or sick -> "CRITICAL - Immediate attention needed"

Respond with the concern level first, then a brief description.""",
    detailed_prompt="""You are an experienced pet care monitoring assistant. Examine this image for the pet's health and safety.

Evaluate posture, activity level, visible distress (panting, drooling), hazards in the environment and access to food and water.

"""
    + _CONCERN_SCALE.format(
        none="Pet appears healthy and comfortable",
        low="Pet not visible or slightly unusual behaviour",
        medium="Unusual posture or extended inactivity",
        high="Signs of distress or a potential hazard",
        critical="Injury, choking or severe distress",
    ),
    motion_boost_threshold=0.6,
    audio_boost_threshold=0.7,
)

BABY_PROFILE = ScenarioProfile(
    scenario=Scenario.BABY,
    name="Baby monitoring",
    triage_prompt="""You are a baby monitoring assistant supplementing parental supervision. Quickly check this image for safety concerns.

- Baby sleeping peacefully or calm -> "NO CONCERN - Baby resting"
- Baby playing safely -> "NO CONCERN - Normal activity"
- Baby not visible -> "MEDIUM CONCERN - Baby not in frame"
- Baby crying -> "MEDIUM CONCERN - Baby may need attention"
- Baby in an unusual position -> "HIGH CONCERN - Check position"
- Baby face down or near a hazard -> "CRITICAL - Check immediately"

Respond with the concern level first, then a brief description.""",
    detailed_prompt="""You are a child safety monitoring assistant supplementing parental supervision. Examine this image for baby or toddler safety.

Evaluate position and breathing, alertness and colour, hazards within reach (loose items, cords, small objects) and signs of discomfort.

"""
    + _CONCERN_SCALE.format(
        none="Safe position, normal behaviour",
        low="Minor observation",
        medium="Baby crying or slight position concern",
        high="Unusual stillness or concerning position",
        critical="Face-down, near a hazard or unresponsive",
    ),
    motion_boost_threshold=0.4,
    audio_boost_threshold=0.5,
)

ELDERLY_PROFILE = ScenarioProfile(
    scenario=Scenario.ELDERLY,
    name="Elderly care monitoring",
    triage_prompt="""You are an elderly care monitoring assistant supplementing proper care. Quickly check this image for safety concerns.

- Person sitting, standing or walking normally -> "NO CONCERN - Normal activity"
- Person resting in bed or a chair -> "NO CONCERN - Resting"
- Person not visible -> "LOW CONCERN - Person not in frame"
- Same position for a long time -> "MEDIUM CONCERN - Extended inactivity"
- Person struggling to move -> "HIGH CONCERN - Mobility difficulty"
- Person on the floor or unresponsive -> "CRITICAL - Possible fall, check immediately"

Respond with the concern level first, then a brief description.""",
    detailed_prompt="""You are an elderly care monitoring assistant supplementing professional care. Examine this image for the person's safety and wellbeing.

Evaluate posture and mobility, signs of a fall, responsiveness, signs of pain or confusion and hazards in the room.

"""
    + _CONCERN_SCALE.format(
        none="Normal activity, person appears well",
        low="Brief inactivity or slight concern",
        medium="Extended inactivity or unusual behaviour",
        high="Mobility difficulty or signs of distress",
        critical="Fall, unresponsive or medical emergency",
    ),
    motion_boost_threshold=0.3,
    audio_boost_threshold=0.5,
)

PROFILES: dict[Scenario, ScenarioProfile] = {
    Scenario.PET: PET_PROFILE,
    Scenario.BABY: BABY_PROFILE,
    Scenario.ELDERLY: ELDERLY_PROFILE,
}


def get_profile(scenario: Scenario) -> ScenarioProfile:
    return PROFILES[scenario]
