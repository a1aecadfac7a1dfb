from dataclasses import dataclass
from typing import Dict, Iterable, List


@dataclass(frozen=True)
class ProviderProfile:
    name: str
    display_name: str
    max_duration: float
    supports_image_to_video: bool
    supports_negative_prompt: bool = True


PROVIDERS: Dict[str, ProviderProfile] = {
    p.name: p
    for p in (
        ProviderProfile("kling-2.5-turbo", "Kling 2.5 Turbo", 10.0, True),
        ProviderProfile("kling-2.1", "Kling 2.1", 10.0, True),
        ProviderProfile("kling-2.0", "Kling 2.0", 10.0, True),
        ProviderProfile("runway-gen3", "Runway Gen-3 Alpha", 10.0, True, supports_negative_prompt=False),
        ProviderProfile("veo-3.1", "Veo 3.1", 8.0, True),
        ProviderProfile("veo-2", "Veo 2", 8.0, True),
        ProviderProfile("luma-dream-machine", "Luma Dream Machine", 5.0, True, supports_negative_prompt=False),
        ProviderProfile("hailuo-minimax", "Hailuo (Minimax)", 6.0, True),
        ProviderProfile("wan-2.1", "Wan 2.1", 5.0, False),
        ProviderProfile("wan-2.6", "Wan 2.6", 5.0, True),
        ProviderProfile("seedance-1.0", "Seedance 1.0", 10.0, True),
    )
}


def get_provider_profile(name: str) -> ProviderProfile:
    """Registry lookup; unknown providers get a conservative 5s text-only profile."""
    profile = PROVIDERS.get(name)
    if profile is None:
        return ProviderProfile(name=name, display_name=name, max_duration=5.0, supports_image_to_video=False)
    return profile


def display_name(name: str) -> str:
    return get_provider_profile(name).display_name


def image_to_video_providers(candidates: Iterable[str]) -> List[str]:
    return [p for p in candidates if get_provider_profile(p).supports_image_to_video]
