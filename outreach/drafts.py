import logging

from django.conf import settings
from openai import OpenAI

from .exceptions import ConfigurationError

SYSTEM_INSTRUCTION = (
    "You are a social media outreach expert. Generate personalized, friendly DM messages "
    "that are 2-3 sentences long. Be genuine and avoid being salesy. Focus on their content, "
    "interests, or achievements mentioned in their bio."
)

PROMPT_TEMPLATE = """Generate a personalized Instagram DM for:
Username: {username}
Full Name: {full_name}
Bio: {bio}
Followers: {followers}

The message should be:
- Friendly and personalized based on their profile
- 2-3 sentences maximum
- Under 280 characters
- Encourage engagement without being pushy
- Reference something specific from their bio if possible"""


def build_prompt(profile):
    return PROMPT_TEMPLATE.format(
        username=profile.username,
        full_name=profile.full_name or "",
        bio=profile.bio or "No bio available",
        followers=profile.followers_count,
    )


class DraftGenerator:
    def __init__(self, api_key=None, base_url=None, model=None, client=None):
        self.logger = logging.getLogger(__name__)
        api_key = api_key if api_key is not None else getattr(settings, 'OPENAI_API_KEY', '')
        if not api_key and client is None:
            raise ConfigurationError("OpenAI API key not configured")
        self.model = model or getattr(settings, 'OPENAI_MODEL', 'gpt-4o')
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=base_url or getattr(settings, 'OPENAI_BASE_URL', None),
        )

    def complete(self, system_instruction, prompt):
        """Single chat completion; the text is returned verbatim."""
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": prompt},
            ],
            stream=False,
        )
        text = response.choices[0].message.content or ""
        self.logger.info(f"Generated draft ({len(text)} chars) with {self.model}")
        return text

    def draft_for(self, profile):
        return self.complete(SYSTEM_INSTRUCTION, build_prompt(profile))
