"""
SQLite database manager for the career catalog.

Provides persistent storage with:
- Career catalog with soft deletes and cached feature vectors
- KNN result cache with per-entry expiry
- Assessment audit records (assessments, recommendations, run summaries)
- Catalog statistics and CSV export
"""

import json
import logging
import re
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from .knn.models import CachedResult, CacheStats, NeighborResult
from .models import CareerProfile, UserProfile, career_id_from_title

logger = logging.getLogger(__name__)

# SQL schema definitions
SCHEMA_SQL = """
-- Careers table: the candidate catalog
CREATE TABLE IF NOT EXISTS careers (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    industry TEXT,
    experience_level TEXT,
    work_environment TEXT,
    salary_range TEXT,
    growth_outlook TEXT,
    required_skills_json TEXT NOT NULL DEFAULT '{}',
    personality_fit_json TEXT NOT NULL DEFAULT '{}',
    feature_vector TEXT,                 -- JSON list, NULL until first computed
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_careers_active ON careers(is_active);
CREATE INDEX IF NOT EXISTS idx_careers_industry ON careers(industry);
CREATE INDEX IF NOT EXISTS idx_careers_experience ON careers(experience_level);
"""

# Schema for the KNN result cache
CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS knn_cache (
    user_features_hash TEXT NOT NULL,
    k_value INTEGER NOT NULL,
    payload_json TEXT NOT NULL,
    computation_time_ms REAL DEFAULT 0,
    pool_size INTEGER DEFAULT 0,
    computed_at_ms INTEGER NOT NULL,
    expires_at_ms INTEGER NOT NULL,
    PRIMARY KEY (user_features_hash, k_value)
);

CREATE INDEX IF NOT EXISTS idx_cache_expiry ON knn_cache(expires_at_ms);
"""

# Schema for assessment audit records
AUDIT_SCHEMA = """
CREATE TABLE IF NOT EXISTS assessments (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    experience_level TEXT,
    career_goals TEXT,
    profile_json TEXT,
    analysis_json TEXT,
    completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS career_recommendations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    assessment_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    career_id TEXT NOT NULL,
    rank INTEGER NOT NULL,
    match_score INTEGER,
    similarity_score REAL,
    knn_distance REAL,
    match_reasons_json TEXT,
    recommendation_source TEXT DEFAULT 'knn',
    k_value INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (assessment_id) REFERENCES assessments(id)
);

CREATE TABLE IF NOT EXISTS knn_results_summary (
    id TEXT PRIMARY KEY,
    assessment_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    knn_generated INTEGER,
    avg_match_score INTEGER,
    industries_count INTEGER,
    processing_time REAL,
    total_profiles_analyzed INTEGER,
    confidence_score INTEGER,
    algorithm_type TEXT,
    k_value INTEGER,
    cache_used BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_recs_assessment ON career_recommendations(assessment_id);
CREATE INDEX IF NOT EXISTS idx_recs_career ON career_recommendations(career_id);
CREATE INDEX IF NOT EXISTS idx_summary_assessment ON knn_results_summary(assessment_id);
CREATE INDEX IF NOT EXISTS idx_summary_user ON knn_results_summary(user_id);
"""


class CareerDatabase:
    """
    SQLite database manager for the career catalog, result cache and audit trail.

    Implements the catalog interface the recommendation engine needs
    (``list_active_careers``, ``update_feature_vector``,
    ``bulk_update_feature_vectors``) and the audit interface
    (``save_assessment``, ``save_results_summary``).

    Example:
        db = CareerDatabase("data/careers.db")
        db.add_career(CareerProfile(title="Data Scientist", industry="Technology"))
        careers = db.list_active_careers()
    """

    def __init__(self, db_path: str = "data/careers.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._connection() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.executescript(CACHE_SCHEMA)
            conn.executescript(AUDIT_SCHEMA)

        logger.debug(f"Database schema ensured at {self.db_path}")

    # =========================================================================
    # Career Catalog
    # =========================================================================

    def upsert_career(self, career: CareerProfile) -> CareerProfile:
        """
        Insert or update a career.

        If the career already exists and any field the feature vector is
        derived from has changed, a stored vector is dropped unless the
        caller supplies a new one.

        Args:
            career: Career to save

        Returns:
            The career as stored
        """
        existing = self.get_career(career.id, include_inactive=True)
        vector = career.feature_vector
        if (
            existing is not None
            and vector is not None
            and vector == existing.feature_vector
            and existing.scoring_fields() != career.scoring_fields()
        ):
            logger.info(f"Invalidating stale feature vector for career '{career.id}'")
            vector = None

        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO careers (
                    id, title, description, industry, experience_level, work_environment,
                    salary_range, growth_outlook, required_skills_json, personality_fit_json,
                    feature_vector, is_active, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    industry = excluded.industry,
                    experience_level = excluded.experience_level,
                    work_environment = excluded.work_environment,
                    salary_range = excluded.salary_range,
                    growth_outlook = excluded.growth_outlook,
                    required_skills_json = excluded.required_skills_json,
                    personality_fit_json = excluded.personality_fit_json,
                    feature_vector = excluded.feature_vector,
                    is_active = excluded.is_active,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    career.id,
                    career.title,
                    career.description,
                    career.industry,
                    career.experience_level,
                    career.work_environment,
                    career.salary_range,
                    career.growth_outlook,
                    json.dumps(career.required_skills),
                    json.dumps(career.personality_fit),
                    json.dumps(vector) if vector else None,
                    1 if career.is_active else 0,
                ),
            )

        stored = self.get_career(career.id, include_inactive=True)
        if stored is None:
            raise RuntimeError(f"Failed to retrieve career '{career.id}' after upsert")
        return stored

    def add_career(self, career: CareerProfile) -> CareerProfile:
        """Add an active career, deriving its ID from the title."""
        data = career.model_dump()
        data.update(id=career_id_from_title(career.title), is_active=True)
        return self.upsert_career(CareerProfile.model_validate(data))

    def get_career(self, career_id: str, include_inactive: bool = False) -> Optional[CareerProfile]:
        """Get a career by ID (active careers only unless include_inactive)."""
        sql = "SELECT * FROM careers WHERE id = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        with self._connection() as conn:
            row = conn.execute(sql, (career_id,)).fetchone()
        return self._row_to_career(row) if row else None

    def list_active_careers(self) -> list[CareerProfile]:
        """
        List every active career in catalog order (by title).

        Careers without a stored vector are included with
        ``feature_vector=None``.
        """
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM careers WHERE is_active = 1 ORDER BY title, id"
            ).fetchall()
        return [self._row_to_career(row) for row in rows]

    def list_careers(
        self,
        industry: Optional[str] = None,
        experience_level: Optional[str] = None,
        include_inactive: bool = False,
    ) -> list[CareerProfile]:
        """List careers with optional filters."""
        conditions = []
        params: list = []

        if not include_inactive:
            conditions.append("is_active = 1")
        if industry:
            conditions.append("industry = ?")
            params.append(industry)
        if experience_level:
            conditions.append("experience_level = ?")
            params.append(experience_level)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM careers {where} ORDER BY title, id", params
            ).fetchall()
        return [self._row_to_career(row) for row in rows]

    def deactivate_career(self, career_id: str) -> bool:
        """
        Soft-delete a career.

        Returns:
            True if a career was deactivated
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE careers SET is_active = 0, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ? AND is_active = 1",
                (career_id,),
            )
            return cursor.rowcount > 0

    def update_feature_vector(self, career_id: str, vector: list[float]) -> None:
        """Persist a computed feature vector for a career."""
        with self._connection() as conn:
            conn.execute(
                "UPDATE careers SET feature_vector = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (json.dumps([float(v) for v in vector]), career_id),
            )

    def bulk_update_feature_vectors(self, updates: dict[str, list[float]]) -> int:
        """
        Persist several feature vectors in one transaction.

        Args:
            updates: Mapping of career_id -> vector

        Returns:
            Number of careers updated
        """
        if not updates:
            return 0

        with self._connection() as conn:
            conn.executemany(
                "UPDATE careers SET feature_vector = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                [
                    (json.dumps([float(v) for v in vector]), career_id)
                    for career_id, vector in updates.items()
                ],
            )
        logger.debug(f"Stored feature vectors for {len(updates)} careers")
        return len(updates)

    def count_careers(self, active_only: bool = True) -> int:
        """Count careers in the catalog."""
        sql = "SELECT COUNT(*) FROM careers"
        if active_only:
            sql += " WHERE is_active = 1"
        with self._connection() as conn:
            return conn.execute(sql).fetchone()[0]

    def get_career_stats(self) -> dict:
        """
        Get catalog statistics.

        Returns:
            Dict with totals, breakdowns by industry and experience level,
            and how many active careers still lack a stored vector
        """
        with self._connection() as conn:
            stats = {}

            stats["total_careers"] = conn.execute("SELECT COUNT(*) FROM careers").fetchone()[0]
            stats["active_careers"] = conn.execute(
                "SELECT COUNT(*) FROM careers WHERE is_active = 1"
            ).fetchone()[0]
            stats["careers_without_vectors"] = conn.execute(
                "SELECT COUNT(*) FROM careers WHERE is_active = 1 AND feature_vector IS NULL"
            ).fetchone()[0]

            rows = conn.execute(
                """
                SELECT industry, COUNT(*) as count
                FROM careers
                WHERE is_active = 1
                GROUP BY industry
                ORDER BY count DESC
                """
            ).fetchall()
            stats["by_industry"] = {row[0] or "": row[1] for row in rows}

            rows = conn.execute(
                """
                SELECT experience_level, COUNT(*) as count
                FROM careers
                WHERE is_active = 1
                GROUP BY experience_level
                ORDER BY count DESC
                """
            ).fetchall()
            stats["by_experience_level"] = {row[0] or "": row[1] for row in rows}

            return stats

    def get_unique_industries(self) -> list[str]:
        """Distinct industries among active careers."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT industry FROM careers WHERE is_active = 1 ORDER BY industry"
            ).fetchall()
        return [row[0] for row in rows]

    def get_unique_experience_levels(self) -> list[str]:
        """Distinct experience levels among active careers."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT experience_level FROM careers WHERE is_active = 1 "
                "ORDER BY experience_level"
            ).fetchall()
        return [row[0] for row in rows]

    def search_careers_by_skills(
        self, skills: list[str], min_skill_match: int = 2
    ) -> list[CareerProfile]:
        """
        Find active careers that require at least ``min_skill_match`` of the given skills.

        Results are ordered by number of matching skills, then title.
        """
        wanted = set(skills)
        matches: list[tuple[int, CareerProfile]] = []
        for career in self.list_active_careers():
            count = len(wanted & set(career.required_skills))
            if count >= min_skill_match:
                matches.append((count, career))
        matches.sort(key=lambda x: (-x[0], x[1].title))
        return [career for _, career in matches]

    def export_careers_to_csv(self, output_path: Path, include_inactive: bool = False) -> int:
        """
        Export the catalog to a CSV file.

        Args:
            output_path: Path for output CSV
            include_inactive: Also export soft-deleted careers

        Returns:
            Number of careers exported
        """
        import pandas as pd

        careers = self.list_careers(include_inactive=include_inactive)
        if not careers:
            return 0

        records = []
        for career in careers:
            record = career.model_dump(exclude={"feature_vector"})
            record["required_skills"] = json.dumps(career.required_skills)
            record["personality_fit"] = json.dumps(career.personality_fit)
            records.append(record)

        df = pd.DataFrame(records)
        df.to_csv(output_path, index=False)
        logger.info(f"Exported {len(df)} careers to {output_path}")
        return len(df)

    def import_careers_from_json(self, input_path: Path) -> tuple[int, int]:
        """
        Load careers from a JSON file into the catalog.

        Accepts a list of career objects or ``{"careers": [...]}``, with
        snake_case or camelCase keys. Invalid entries are logged and skipped.

        Args:
            input_path: Path to the JSON file

        Returns:
            Tuple of (careers loaded, entries skipped)
        """
        with open(input_path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("careers", [])

        loaded = skipped = 0
        for i, raw in enumerate(data):
            try:
                career = CareerProfile.model_validate(_snake_case_keys(raw))
            except ValidationError as e:
                logger.warning(f"Skipping career #{i} in {input_path}: {e}")
                skipped += 1
                continue
            self.upsert_career(career)
            loaded += 1

        logger.info(f"Loaded {loaded} careers from {input_path} ({skipped} skipped)")
        return loaded, skipped

    def _row_to_career(self, row: sqlite3.Row) -> CareerProfile:
        vector = row["feature_vector"]
        return CareerProfile(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            industry=row["industry"] or "",
            experience_level=row["experience_level"] or "",
            work_environment=row["work_environment"] or "",
            salary_range=row["salary_range"] or "",
            growth_outlook=row["growth_outlook"] or "",
            required_skills=json.loads(row["required_skills_json"] or "{}"),
            personality_fit=json.loads(row["personality_fit_json"] or "{}"),
            feature_vector=json.loads(vector) if vector else None,
            is_active=bool(row["is_active"]),
        )

    # =========================================================================
    # Result Cache
    # =========================================================================

    def get_cache_row(self, hash_key: str, k: int) -> Optional[CachedResult]:
        """Get a cache entry by key, whether or not it has expired."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM knn_cache WHERE user_features_hash = ? AND k_value = ?",
                (hash_key, k),
            ).fetchone()

        if row is None:
            return None
        return CachedResult(
            hash=row["user_features_hash"],
            k=row["k_value"],
            payload=json.loads(row["payload_json"]),
            computed_at_ms=row["computed_at_ms"],
            expires_at_ms=row["expires_at_ms"],
            computation_time_ms=row["computation_time_ms"] or 0.0,
            pool_size=row["pool_size"] or 0,
        )

    def upsert_cache_row(self, entry: CachedResult) -> None:
        """Insert a cache entry, overwriting any entry with the same key."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO knn_cache
                (user_features_hash, k_value, payload_json, computation_time_ms,
                 pool_size, computed_at_ms, expires_at_ms)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_features_hash, k_value) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    computation_time_ms = excluded.computation_time_ms,
                    pool_size = excluded.pool_size,
                    computed_at_ms = excluded.computed_at_ms,
                    expires_at_ms = excluded.expires_at_ms
                """,
                (
                    entry.hash,
                    entry.k,
                    json.dumps(entry.payload),
                    entry.computation_time_ms,
                    entry.pool_size,
                    entry.computed_at_ms,
                    entry.expires_at_ms,
                ),
            )

    def purge_expired_cache(self, now_ms: int) -> int:
        """Delete cache entries that expired at or before now_ms."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM knn_cache WHERE expires_at_ms <= ?", (now_ms,)
            )
            return cursor.rowcount

    def delete_all_cache(self) -> int:
        """Delete every cache entry."""
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM knn_cache")
            return cursor.rowcount

    def get_cache_stats(self, now_ms: int) -> CacheStats:
        """Count total, active and expired cache entries."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) as total,
                    SUM(CASE WHEN expires_at_ms > ? THEN 1 ELSE 0 END) as active,
                    AVG(computation_time_ms) as avg_time
                FROM knn_cache
                """,
                (now_ms,),
            ).fetchone()

        total = row["total"] or 0
        active = row["active"] or 0
        return CacheStats(
            total_entries=total,
            active_entries=active,
            expired_entries=total - active,
            avg_computation_ms=row["avg_time"] or 0.0,
        )

    # =========================================================================
    # Assessment Audit Records
    # =========================================================================

    def save_assessment(
        self,
        assessment_id: str,
        profile: UserProfile,
        neighbors: list[NeighborResult],
        analysis: dict,
        k: int,
    ) -> str:
        """
        Record a completed assessment and its recommendations.

        Args:
            assessment_id: Identifier for this assessment
            profile: The submitted user profile
            neighbors: Recommended careers, best first
            analysis: Serialized AnalysisSummary
            k: Number of neighbours requested

        Returns:
            The user ID the assessment was stored under (generated when
            the profile is anonymous)
        """
        user_id = profile.user_id or f"user_{uuid.uuid4().hex[:12]}"

        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO assessments
                (id, user_id, experience_level, career_goals, profile_json, analysis_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    assessment_id,
                    user_id,
                    profile.experience_level,
                    profile.career_goals,
                    profile.model_dump_json(),
                    json.dumps(analysis),
                ),
            )
            conn.executemany(
                """
                INSERT INTO career_recommendations
                (assessment_id, user_id, career_id, rank, match_score, similarity_score,
                 knn_distance, match_reasons_json, recommendation_source, k_value)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        assessment_id,
                        user_id,
                        result.career.id,
                        rank,
                        round(result.similarity),
                        result.similarity,
                        result.distance,
                        json.dumps(result.match_reasons),
                        "knn",
                        k,
                    )
                    for rank, result in enumerate(neighbors, start=1)
                ],
            )

        return user_id

    def save_results_summary(self, summary: dict) -> str:
        """
        Record the summary of one recommendation run.

        Args:
            summary: Column values for knn_results_summary; ``id`` is
                generated when missing

        Returns:
            The summary ID
        """
        summary_id = summary.get("id") or f"knn_summary_{uuid.uuid4().hex[:12]}"
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO knn_results_summary (
                    id, assessment_id, user_id, knn_generated, avg_match_score,
                    industries_count, processing_time, total_profiles_analyzed,
                    confidence_score, algorithm_type, k_value, cache_used
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary_id,
                    summary["assessment_id"],
                    summary["user_id"],
                    summary.get("knn_generated", 0),
                    summary.get("avg_match_score", 0),
                    summary.get("industries_count", 0),
                    summary.get("processing_time", 0.0),
                    summary.get("total_profiles_analyzed", 0),
                    summary.get("confidence_score", 0),
                    summary.get("algorithm_type", "KNN"),
                    summary.get("k_value"),
                    bool(summary.get("cache_used", False)),
                ),
            )
        return summary_id

    def get_results_summary(
        self,
        assessment_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Get the most recent run summary for an assessment or a user.

        Raises:
            ValueError: If neither assessment_id nor user_id is given
        """
        if assessment_id:
            sql = "SELECT * FROM knn_results_summary WHERE assessment_id = ?"
            param = assessment_id
        elif user_id:
            sql = "SELECT * FROM knn_results_summary WHERE user_id = ?"
            param = user_id
        else:
            raise ValueError("assessment_id or user_id is required")

        with self._connection() as conn:
            row = conn.execute(
                sql + " ORDER BY created_at DESC, rowid DESC LIMIT 1", (param,)
            ).fetchone()

        if row is None:
            return None
        result = dict(row)
        result["cache_used"] = bool(result["cache_used"])
        return result

    def get_recommendations_for_assessment(self, assessment_id: str) -> list[dict]:
        """Get the stored recommendations for an assessment, best first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM career_recommendations WHERE assessment_id = ? ORDER BY rank",
                (assessment_id,),
            ).fetchall()

        results = []
        for row in rows:
            record = dict(row)
            record["match_reasons"] = json.loads(record.pop("match_reasons_json") or "[]")
            results.append(record)
        return results

    def get_system_metrics(self, top_n: int = 5) -> dict:
        """
        Get usage metrics across all assessments.

        Returns:
            Dict with total assessments, average cache computation time,
            number of cache entries and the most recommended careers
        """
        with self._connection() as conn:
            total_assessments = conn.execute("SELECT COUNT(*) FROM assessments").fetchone()[0]
            avg_time = conn.execute(
                "SELECT AVG(computation_time_ms) FROM knn_cache"
            ).fetchone()[0]
            cache_entries = conn.execute("SELECT COUNT(*) FROM knn_cache").fetchone()[0]
            rows = conn.execute(
                """
                SELECT c.title, COUNT(*) as recommendations
                FROM career_recommendations cr
                JOIN careers c ON cr.career_id = c.id
                GROUP BY c.title
                ORDER BY recommendations DESC, c.title
                LIMIT ?
                """,
                (top_n,),
            ).fetchall()

        return {
            "total_assessments": total_assessments,
            "avg_processing_time_ms": round(avg_time or 0),
            "cache_entries": cache_entries,
            "top_careers": [
                {"career": row[0], "recommendations": row[1]} for row in rows
            ],
        }


def _snake_case_keys(raw: dict) -> dict:
    """Convert top-level camelCase keys (``requiredSkills``) to snake_case."""
    if not isinstance(raw, dict):
        return raw
    return {re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower(): value for key, value in raw.items()}
