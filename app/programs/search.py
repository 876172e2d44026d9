"""
Study-programme catalogue search over the `programs` collection.

The pipeline is `$match -> $sort -> $facet{docs, totalCount}` so one round trip
returns both the page and the total. Free text from the caller is always
regex-escaped before it reaches Mongo.
"""

import math
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pymongo.collection import Collection

from app.config import settings
from app.obs.logger import log_event


class Discipline(str, Enum):
    BUSINESS = "Business & Management"
    SOCIAL_SCIENCES_LAW = "Social Sciences & Law"
    ARTS_HUMANITIES = "Arts & Humanities"
    HEALTH_MEDICINE = "Health & Medicine"
    NATURAL_SCIENCES = "Natural & Physical Sciences"
    ENGINEERING = "Engineering & Technology"
    CREATIVE_ARTS = "Creative Arts & Design"
    COMPUTER_SCIENCE = "Computer Science & IT"
    EDUCATION = "Education"
    MEDIA = "Media & Communications"
    AGRICULTURE = "Agriculture & Environmental Science"
    SPORTS = "Sports Science"
    HOSPITALITY = "Hospitality & Tourism"
    ARCHITECTURE = "Architecture & Construction"
    AVIATION = "Aviation & Aerospace"
    THEOLOGY = "Theology & Religious Studies"


class Country(str, Enum):
    UNITED_KINGDOM = "United Kingdom"
    UNITED_STATES = "United States"
    CANADA = "Canada"
    NEW_ZEALAND = "New Zealand"
    AUSTRALIA = "Australia"
    IRELAND = "Ireland"
    GERMANY = "Germany"
    FRANCE = "France"
    SWITZERLAND = "Switzerland"
    UAE = "United Arab Emirates"
    POLAND = "Poland"
    SPAIN = "Spain"
    CYPRUS = "Cyprus"
    ITALY = "Italy"
    GRENADA = "Grenada"
    NETHERLANDS = "Netherlands"
    MALAYSIA = "Malaysia"
    MAURITIUS = "Mauritius"
    HUNGARY = "Hungary"
    MONACO = "Monaco"
    GUYANA = "Guyana"
    SLOVENIA = "Slovenia"


class CourseLevel(str, Enum):
    UNDERGRADUATE = "Undergraduate"
    POSTGRADUATE = "Postgraduate"
    DOCTORATE = "Doctorate"
    FOUNDATION = "Foundation"
    PRE_MASTERS = "PreMasters"
    LANGUAGE = "Language"
    PRESESSIONAL_ENGLISH = "PresessionalEnglish"
    PROFESSIONAL_SHORT_COURSE = "ProfessionalShortCourse"


class ProgramSearchParams(BaseModel):
    discipline: Discipline = Field(..., description="Academic discipline / field of study")
    country: Country = Field(..., description="Country where the institution is located")
    course_level: CourseLevel = Field(..., description="Level of study")
    institution_name: Optional[str] = Field(None, description="Institution name, e.g. 'Aston University'")
    course_name: Optional[str] = Field(None, description="Keywords in the course title, e.g. 'MBA'")
    min_fee: Optional[float] = Field(None, description="Minimum annual fee")
    max_fee: Optional[float] = Field(None, description="Maximum annual fee")
    subjects: Optional[str] = Field(None, description="Subject keyword, e.g. 'accounting'")
    express_offer: Optional[bool] = Field(None, description="Only programmes with express admission")
    page: int = Field(1, ge=1, description="Results page, starting at 1")


PROJECTION = {
    "name": 1, "courseLevel": 1, "approxAnnualFee": 1, "currency": 1, "expressOffer": 1,
    "subjects": 1, "categories": 1, "discipline": 1,
    "institution.name": 1, "institution.address.country": 1,
    "courseOverview": 1, "programHighlights": 1, "requirements": 1,
    "scrapedTuitionFees": 1, "scrapedDuration": 1, "scrapedCampus": 1,
    "scrapedStudyMode": 1, "scrapedStartDate": 1, "hasScrapedData": 1,
}


def _icontains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def _fee(value: float) -> str:
    # fees are stored as strings ("23500")
    return str(int(value)) if float(value).is_integer() else str(value)


def build_match(params: ProgramSearchParams) -> Dict[str, Any]:
    match: Dict[str, Any] = {
        "discipline": _icontains(params.discipline.value),
        "institution.address.country": _icontains(params.country.value),
        "courseLevel": params.course_level.value,
    }
    if params.institution_name:
        match["institution.name"] = _icontains(params.institution_name)
    if params.course_name:
        match["name"] = _icontains(params.course_name)
    if params.subjects:
        match["subjects"] = {"$elemMatch": _icontains(params.subjects)}
    if params.express_offer is not None:
        match["expressOffer"] = params.express_offer
    fee: Dict[str, str] = {}
    if params.min_fee:
        fee["$gte"] = _fee(params.min_fee)
    if params.max_fee:
        fee["$lte"] = _fee(params.max_fee)
    if fee:
        match["approxAnnualFee"] = fee
    return match


def build_pipeline(params: ProgramSearchParams, page_size: int) -> List[Dict[str, Any]]:
    offset = (params.page - 1) * page_size
    return [
        {"$match": build_match(params)},
        {"$sort": {"uploadTimestamp": -1, "_id": 1}},
        {"$facet": {
            "docs": [{"$skip": offset}, {"$limit": page_size}, {"$project": PROJECTION}],
            "totalCount": [{"$count": "count"}],
        }},
    ]


STATS_PIPELINE = [
    {"$facet": {
        "byCountry": [
            {"$group": {"_id": "$institution.address.country", "count": {"$sum": 1}}},
            {"$project": {"_id": 0, "country": "$_id", "count": 1}},
            {"$sort": {"count": -1}},
            {"$limit": 10},
        ],
        "byDiscipline": [
            {"$group": {"_id": "$discipline", "count": {"$sum": 1}}},
            {"$project": {"_id": 0, "discipline": "$_id", "count": 1}},
            {"$sort": {"count": -1}},
            {"$limit": 10},
        ],
        "byCourseLevel": [
            {"$group": {"_id": "$courseLevel", "count": {"$sum": 1}}},
            {"$project": {"_id": 0, "level": "$_id", "count": 1}},
            {"$sort": {"count": -1}},
        ],
        "totalPrograms": [{"$count": "total"}],
    }},
]


class ProgramPage(BaseModel):
    params: ProgramSearchParams
    docs: List[Dict[str, Any]]
    total: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))


class ProgramsRepository:
    def __init__(self, collection: Collection, page_size: int = None):
        self.collection = collection
        self.page_size = page_size or settings.PROGRAMS_PAGE_SIZE

    def search(self, params: ProgramSearchParams) -> ProgramPage:
        result = next(iter(self.collection.aggregate(build_pipeline(params, self.page_size))), {}) or {}
        docs = result.get("docs") or []
        counts = result.get("totalCount") or []
        total = counts[0].get("count", 0) if counts else 0
        log_event("programs_search", total=total, page=params.page, returned=len(docs))
        return ProgramPage(params=params, docs=docs, total=total, page_size=self.page_size)

    def aggregated_stats(self) -> Dict[str, Any]:
        result = next(iter(self.collection.aggregate(STATS_PIPELINE)), {}) or {}
        totals = result.get("totalPrograms") or []
        return {
            "total": totals[0].get("total", 0) if totals else 0,
            "by_country": result.get("byCountry") or [],
            "by_discipline": [d for d in result.get("byDiscipline") or [] if d.get("discipline")],
            "by_course_level": result.get("byCourseLevel") or [],
        }


def _clip(text: str, limit: int) -> str:
    text = re.sub(r"\n+", " ", text)
    return text[:limit] + ("…" if len(text) > limit else "")


def format_program(doc: Dict[str, Any], index: int) -> str:
    inst = doc.get("institution") or {}
    lines = [
        f"### {index}. {doc.get('name', 'N/A')}",
        f"**Institution:** {inst.get('name') or 'N/A'}",
        f"**Country:** {(inst.get('address') or {}).get('country') or 'N/A'}",
        f"**Level:** {doc.get('courseLevel', 'N/A')}",
        f"**Fee:** {doc.get('currency', '')} {doc.get('approxAnnualFee', 'N/A')}"
        + (" ⚡ *Express Offer Available*" if doc.get("expressOffer") else ""),
        f"**Discipline:** {doc.get('discipline') or 'N/A'}",
        f"**Subjects:** {', '.join((doc.get('subjects') or [])[:5]) or 'N/A'}",
    ]
    if doc.get("scrapedDuration"):
        lines.append(f"**Duration:** {doc['scrapedDuration']}")
    elif doc.get("scrapedStudyMode"):
        lines.append(f"**Study Mode:** {doc['scrapedStudyMode']}")
    if doc.get("scrapedStartDate"):
        lines.append(f"**Start Date:** {doc['scrapedStartDate']}")
    if doc.get("scrapedTuitionFees"):
        lines.append(f"**Tuition Fees:** {doc['scrapedTuitionFees']}")
    if doc.get("scrapedCampus"):
        lines.append(f"**Campus:** {doc['scrapedCampus']}")
    if doc.get("courseOverview"):
        lines.append(f"**Overview:** {_clip(doc['courseOverview'], 400)}")
    if doc.get("programHighlights"):
        lines.append(f"**Highlights:** {_clip(doc['programHighlights'], 300)}")
    if doc.get("requirements"):
        lines.append(f"**Requirements:** {_clip(doc['requirements'], 300)}")
    if doc.get("hasScrapedData"):
        lines.append("**Enriched:** ✅ Scraped enrichment available")
    return "\n".join(lines)


def format_program_page(result: ProgramPage) -> str:
    p = result.params
    criteria = [
        f"- Discipline: {p.discipline.value}",
        f"- Country: {p.country.value}",
        f"- Study Level: {p.course_level.value}",
    ]
    if p.institution_name:
        criteria.append(f"- Institution: {p.institution_name}")
    if p.course_name:
        criteria.append(f"- Course Keywords: {p.course_name}")
    if p.subjects:
        criteria.append(f"- Subject Keywords: {p.subjects}")
    if p.min_fee or p.max_fee:
        low = f"{_fee(p.min_fee)}+" if p.min_fee else ""
        high = f" - {_fee(p.max_fee)}" if p.max_fee else ""
        criteria.append(f"- Fee Range: {low}{high}".rstrip())
    if p.express_offer:
        criteria.append("- Express Offers Only: Yes")

    first = (p.page - 1) * result.page_size + 1
    parts = [
        "🎓 **NGabroad Partner Programs Search Results**",
        "",
        "**Search Criteria:**",
        *criteria,
        "",
        "**Results Summary:**",
        f"- **Total Programs Found:** {result.total} matching programs",
        f"- **Current Page:** {p.page} of {result.total_pages}",
        f"- **Programs on This Page:** {len(result.docs)}",
        "",
        "\n\n".join(format_program(d, first + i) for i, d in enumerate(result.docs)),
        "",
    ]
    if p.page < result.total_pages:
        remaining = max(0, result.total - p.page * result.page_size)
        parts.append(f"💡 **Want to see more options?** There are {result.total_pages - p.page} more pages "
                     f"available with {remaining} additional programs. Just ask me to show you the next page!")
    else:
        parts.append("✨ **You've seen all available programs for these criteria!**")
    return "\n".join(parts)


def format_stats(stats: Dict[str, Any]) -> str:
    countries = "\n".join(
        f"{i}. **{c['country']}** - {c['count']:,} programs" for i, c in enumerate(stats["by_country"], 1)
    ) or "No data available"
    disciplines = "\n".join(
        f"{i}. **{d['discipline']}** - {d['count']:,} programs" for i, d in enumerate(stats["by_discipline"], 1)
    ) or "No data available"
    levels = "\n".join(
        f"• **{lvl['level']}** - {lvl['count']:,} programs" for lvl in stats["by_course_level"]
    ) or "No data available"
    return (
        "## Study Abroad Database Statistics\n\n"
        f"**Total Programs Available:** {stats['total']:,}\n\n"
        f"### Top 10 Study Destinations:\n{countries}\n\n"
        f"### Popular Academic Disciplines:\n{disciplines}\n\n"
        f"### Study Levels Available:\n{levels}"
    )
