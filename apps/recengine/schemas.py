# apps/recengine/schemas.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class RankingRequest(BaseModel):
    userId: int
    contentType: Optional[str] = None
    page: int = 0
    pageSize: int = 20


class RankingResponse(BaseModel):
    postIds: List[int] = Field(default_factory=list)


class InfoButtonClicksUser(BaseModel):
    total: int = 0
    lastClicked: str = ""
    postClicks: Dict[str, int] = Field(default_factory=dict)


class InfoButtonClicksPost(BaseModel):
    count: int = 0
    uniqueUserCount: int = 0
    lastClicked: str = ""
    userIds: List[int] = Field(default_factory=list)


class LanguagePreferences(BaseModel):
    weights: Dict[str, float] = Field(default_factory=dict)
    languageNames: Dict[str, str] = Field(default_factory=dict)
    topLanguages: Dict[str, float] = Field(default_factory=dict)
    updatedAt: str


class RefreshSummary(BaseModel):
    job: str
    total: int
    succeeded: int
    failed: int
    failures: List[Dict[str, Any]] = Field(default_factory=list)
