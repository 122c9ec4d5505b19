"""External meta-synthesis service client.

The service receives the base-learner picks plus the local ensemble
metadata and returns a synthesized meta-pick as JSON. It is optional: the
EnsembleSynthesizer falls back to its own stacked result whenever this
client raises SynthesisError.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from core.constants import META_CONFIDENCE_MAX, META_CONFIDENCE_MIN
from core.exceptions import SynthesisError

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

VALID_PICKS = ('home', 'away', 'skip')


class SynthesisClient:
    """
    Client for a chat-completions style synthesis endpoint.

    The endpoint is expected to answer with either the synthesis object
    itself or a chat completion whose first message content contains it.
    """

    def __init__(
        self,
        url: str,
        api_key: str = None,
        timeout: float = 20.0,
        model: str = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.model = model
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    def _headers(self) -> dict:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    def build_payload(self, match: Dict[str, Any], picks: List[dict], metadata: Dict[str, Any]) -> dict:
        lines = [
            f"- {p['algorithm_id']}: {p['recommended']} (confidence: {p['confidence']}%, "
            f"EV: {p.get('ev_percentage', 0)}%, Kelly: {p.get('kelly_stake_units', 0)}u)"
            for p in picks
        ]
        prompt = (
            f"Match: {match.get('title', '')}\n"
            f"Home: {match.get('home_team', '')} | Away: {match.get('away_team', '')}\n\n"
            "BASE LEARNER PREDICTIONS:\n" + "\n".join(lines) + "\n\n"
            f"ENSEMBLE METADATA:\n{json.dumps(metadata, sort_keys=True)}\n\n"
            "Return only valid JSON with metaPick, metaConfidence (40-95) and synthesis."
        )
        payload = {
            'messages': [{'role': 'user', 'content': prompt}],
            'temperature': 0.3,
        }
        if self.model:
            payload['model'] = self.model
        return payload

    def synthesize(self, match: Dict[str, Any], picks: List[dict], metadata: Dict[str, Any]) -> dict:
        """
        Request a synthesized meta-pick.

        Returns:
            dict with 'meta_pick', 'meta_confidence' and 'synthesis'

        Raises:
            SynthesisError: timeout, connection failure, HTTP error or an
                unparseable response
        """
        if not self.is_configured:
            raise SynthesisError("no synthesis URL configured")

        try:
            response = self._session.post(
                self.url,
                json=self.build_payload(match, picks, metadata),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise SynthesisError(f"request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise SynthesisError(f"request failed: {e}")

        if response.status_code == 429:
            raise SynthesisError("rate limited", status_code=429)
        if response.status_code == 402:
            raise SynthesisError("credits exhausted", status_code=402)
        if response.status_code >= 400:
            raise SynthesisError("service returned an error", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise SynthesisError("response is not JSON", status_code=response.status_code)

        return self.parse_result(body)

    @staticmethod
    def parse_result(body: Any) -> dict:
        """Extract and validate the synthesis object from a response body."""
        if isinstance(body, dict) and 'choices' in body:
            try:
                content = body['choices'][0]['message']['content'] or ''
            except (KeyError, IndexError, TypeError):
                raise SynthesisError("completion has no message content")
            match = _JSON_OBJECT.search(content)
            if not match:
                raise SynthesisError("no JSON object in completion")
            try:
                body = json.loads(match.group(0))
            except ValueError:
                raise SynthesisError("completion JSON could not be parsed")

        if not isinstance(body, dict):
            raise SynthesisError("synthesis result is not an object")

        pick = body.get('metaPick', body.get('meta_pick'))
        confidence = body.get('metaConfidence', body.get('meta_confidence'))
        if pick not in VALID_PICKS:
            raise SynthesisError(f"invalid metaPick: {pick!r}")
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            raise SynthesisError(f"invalid metaConfidence: {confidence!r}")

        return {
            'meta_pick': pick,
            'meta_confidence': max(META_CONFIDENCE_MIN, min(META_CONFIDENCE_MAX, confidence)),
            'synthesis': str(body.get('synthesis', '')),
        }
