"""Puntuación de afinidad entre un perfil y los proyectos abiertos."""
from typing import Iterable, List, Tuple

from coventure.schemas.profile import ProfileRead, Recommendation
from coventure.schemas.project import ProjectRead
from coventure.services.store import order_stamp

INTEREST_WEIGHT = 0.5


def _norm(tag: str) -> str:
    return tag.strip().lower()


def score_project(profile: ProfileRead, project: ProjectRead) -> Tuple[int, List[str]]:
    """Devuelve (puntuación 0-100, habilidades coincidentes).

    Cada habilidad requerida cuenta entera si el perfil la tiene como skill y
    a mitad si solo aparece entre sus intereses.
    """
    required = [s for s in project.required_skills if s.strip()]
    if not required:
        return 0, []
    skills = {_norm(s) for s in profile.skills}
    interests = {_norm(i) for i in profile.interests}
    matched = [s for s in required if _norm(s) in skills]
    partial = [s for s in required if _norm(s) in interests and _norm(s) not in skills]
    score = round(100 * (len(matched) + INTEREST_WEIGHT * len(partial)) / len(required))
    return min(score, 100), matched


def recommend(profile: ProfileRead, projects: Iterable[ProjectRead], limit: int = 5) -> List[Recommendation]:
    scored = []
    for project in projects:
        score, matched = score_project(profile, project)
        if score > 0:
            scored.append(Recommendation(project=project, score=score, matched_skills=matched))
    # a igual puntuación, los más recientes primero
    scored.sort(key=lambda r: (-r.score, -order_stamp(r.project).timestamp()))
    return scored[:limit]
