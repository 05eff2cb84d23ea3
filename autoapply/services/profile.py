import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from autoapply.services.listings import ListingFilter


class Demographics(BaseModel):
    gender: str | None = None
    lgbtq: str | None = None
    race_ethnicity: str | None = None
    veteran_status: str | None = None
    disability_status: str | None = None


class ResumeAsset(BaseModel):
    model_config = {"frozen": True}

    label: str
    path: Path
    sha256: str = ""
    is_default: bool = False


class CandidateProfile(BaseModel):
    full_name: str = ""
    first_name: str | None = None
    last_name: str | None = None
    email: str = ""
    phone: str = ""
    location: str | None = None
    state: str | None = None
    work_authorization: str | None = None
    sponsorship: str | None = None
    prior_employment: str | None = None
    referral_source: str | None = None
    linkedin: str | None = None
    website: str | None = None
    github: str | None = None
    demographics: Demographics = Field(default_factory=Demographics)
    answers: dict[str, str] = Field(default_factory=dict)
    summary: str | None = None
    skills: list[str] = Field(default_factory=list)
    resumes: list[ResumeAsset] = Field(default_factory=list)
    preferences: ListingFilter = Field(default_factory=ListingFilter)

    def field_values(self) -> dict[str, str]:
        """Flatten the profile into field identity -> value for the form engine."""
        parts = self.full_name.split()
        first = self.first_name or (parts[0] if parts else "")
        last = self.last_name or (" ".join(parts[1:]) if len(parts) > 1 else "")
        full = self.full_name or " ".join(part for part in [first, last] if part)
        demo = self.demographics
        values = {
            "first_name": first,
            "last_name": last,
            "full_name": full,
            "email": self.email,
            "phone": self.phone,
            "location": self.location,
            "state": self.state,
            "work_authorization": self.work_authorization,
            "sponsorship": self.sponsorship,
            "prior_employment": self.prior_employment,
            "referral_source": self.referral_source,
            "linkedin": self.linkedin,
            "website": self.website,
            "github": self.github,
            "gender": demo.gender,
            "lgbtq": demo.lgbtq,
            "race_ethnicity": demo.race_ethnicity,
            "veteran_status": demo.veteran_status,
            "disability_status": demo.disability_status,
        }
        return {key: str(value).strip() for key, value in values.items() if value and str(value).strip()}

    def select_resume(self) -> ResumeAsset | None:
        for resume in self.resumes:
            if resume.is_default:
                return resume
        return self.resumes[0] if self.resumes else None


class ProfileStore:
    """YAML-backed profile document; generated answers are written back under `answers`."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        return yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}

    def load(self) -> CandidateProfile:
        return CandidateProfile.model_validate(self._read())

    def save_answer(self, key: str, answer: str) -> None:
        with self._lock:
            data = self._read()
            answers = data.get("answers") or {}
            answers[key] = answer
            data["answers"] = answers
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
