"""Engine configuration loaded from the environment."""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from gradebook.errors import ConfigurationError
from gradebook.identifiers import DEFAULT_PREFIX
from gradebook.models import TiePolicy
from gradebook.notices import DEFAULT_SENDER
from gradebook.performance import DEFAULT_PROMOTION_PASS_RATIO, PromotionPolicy
from gradebook.rendering import DEFAULT_REPORT_URL_TEMPLATE


class EngineConfig(BaseModel):
    """Settings passed explicitly into the store and the API layer."""
    promotion_pass_ratio: float = Field(DEFAULT_PROMOTION_PASS_RATIO, ge=0, le=1)
    promote_when_no_subjects: bool = True
    ranking_tie_policy: TiePolicy = TiePolicy.COMPETITION
    require_ranking_before_generate: bool = True
    strict_term_invariant: bool = True
    student_id_prefix: str = DEFAULT_PREFIX
    report_url_template: str = DEFAULT_REPORT_URL_TEMPLATE
    sender_name: str = DEFAULT_SENDER['name']
    sender_email: str = DEFAULT_SENDER['email']
    max_upload_size_mb: int = Field(10, gt=0)
    allow_origins: List[str] = Field(default_factory=lambda: ['*'])
    log_level: str = 'INFO'

    def promotion_policy(self) -> PromotionPolicy:
        return PromotionPolicy(
            pass_ratio=self.promotion_pass_ratio,
            promote_when_no_subjects=self.promote_when_no_subjects,
        )

    @property
    def sender(self) -> Dict[str, str]:
        return {'name': self.sender_name, 'email': self.sender_email}

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


# env var -> config field
ENV_FIELDS = {
    'PROMOTION_PASS_RATIO': 'promotion_pass_ratio',
    'PROMOTE_WHEN_NO_SUBJECTS': 'promote_when_no_subjects',
    'RANKING_TIE_POLICY': 'ranking_tie_policy',
    'REQUIRE_RANKING_BEFORE_GENERATE': 'require_ranking_before_generate',
    'STRICT_TERM_INVARIANT': 'strict_term_invariant',
    'STUDENT_ID_PREFIX': 'student_id_prefix',
    'REPORT_URL_TEMPLATE': 'report_url_template',
    'REPORT_SENDER_NAME': 'sender_name',
    'REPORT_SENDER_EMAIL': 'sender_email',
    'MAX_UPLOAD_SIZE_MB': 'max_upload_size_mb',
    'LOG_LEVEL': 'log_level',
}


def load_config(environ: Optional[Dict[str, str]] = None) -> EngineConfig:
    """
    Build the configuration from environment variables (and a .env file).

    Raises:
        ConfigurationError: a variable holds an invalid value.
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    values = {}
    for env_name, field in ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip() != '':
            values[field] = raw.strip()

    origins = environ.get('ALLOW_ORIGINS')
    if origins:
        values['allow_origins'] = [o.strip() for o in origins.split(',') if o.strip()]

    try:
        return EngineConfig(**values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
