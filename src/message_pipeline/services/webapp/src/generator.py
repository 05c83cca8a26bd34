"""Random suggestion shown in the message form."""

import random
from datetime import datetime


ADJECTIVES = ("Amazing", "Fantastic", "Incredible", "Awesome", "Brilliant", "Superb", "Outstanding", "Excellent")
NOUNS = ("Kubernetes", "Container", "Microservice", "Application", "System", "Platform", "Service", "Deployment")
VERBS = ("rocks", "rules", "shines", "delivers", "performs", "scales", "works", "succeeds")


def generate_message(rng: random.Random, now: datetime) -> str:
    """Build a message like ``"Brilliant Platform scales at 14:02:11"``.

    Pure in its inputs: the same seed and clock value give the same text.
    """
    adjective = rng.choice(ADJECTIVES)
    noun = rng.choice(NOUNS)
    verb = rng.choice(VERBS)
    return f"{adjective} {noun} {verb} at {now:%H:%M:%S}"
