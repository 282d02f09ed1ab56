"""Tests for the SQLite data access layer."""

import pytest

from l10ntm.core.exceptions import InvalidTOCError, JobNotFoundError
from l10ntm.core.models import TOC, ChannelSegment, Job, TOCBlock
from l10ntm.core.normalized import source_guid
from l10ntm.memory.dal import TMDatabase


def _toc(blocks: dict[str, list[tuple[str, str]]], v: int = 1) -> TOC:
    return TOC(
        v=v,
        source_lang="en",
        target_lang="fr",
        blocks={block_id: TOCBlock(modified="TS1", jobs=jobs) for block_id, jobs in blocks.items()},
    )


@pytest.mark.unit
class TestSchemaAndJobs:
    """Tests for jobs storage."""

    def test_initialize_is_idempotent(self, tm_db: TMDatabase) -> None:
        """Test re-initializing keeps the connection."""
        conn = tm_db.conn
        tm_db.initialize()

        assert tm_db.conn is conn

    def test_save_and_load_job(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test a job round-trips with its TUs in order."""
        job = simple_job_factory("job1", count=3, jobName="Release")

        tm_db.jobs.save_job(job, tm_store="shared")
        loaded = tm_db.jobs.get_job("job1")

        assert loaded is not None
        assert loaded.tm_store == "shared"
        assert loaded.status == "done"
        assert loaded.job_props()["jobName"] == "Release"
        assert [tu.guid for tu in loaded.tus] == [tu.guid for tu in job.tus]
        assert loaded.tus[0].nsrc == job.tus[0].nsrc
        assert loaded.inflight is None

    def test_get_missing_job(self, tm_db: TMDatabase) -> None:
        """Test unknown jobs return None."""
        assert tm_db.jobs.get_job("nope") is None

    def test_saving_again_replaces_tus(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test re-saving a job replaces its TU set."""
        tm_db.jobs.save_job(simple_job_factory("job1", count=3))
        tm_db.jobs.save_job(simple_job_factory("job1", count=1))

        assert tm_db.tus("en", "fr").get_stats().tu_count == 1

    def test_available_pairs_and_count(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test language pairs are derived from jobs."""
        tm_db.jobs.save_job(simple_job_factory("job1"))
        tm_db.jobs.save_job(simple_job_factory("job2", target_lang="de"))

        assert tm_db.jobs.get_available_lang_pairs() == [("en", "de"), ("en", "fr")]
        assert tm_db.jobs.get_job_count() == 2

    def test_set_job_tm_store(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test ownership tagging."""
        tm_db.jobs.save_job(simple_job_factory("job1"))

        tm_db.jobs.set_job_tm_store("job1", "shared")

        assert tm_db.jobs.get_job_row("job1")["tm_store"] == "shared"
        with pytest.raises(JobNotFoundError):
            tm_db.jobs.set_job_tm_store("nope", "shared")

    def test_delete_job(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test deleting a job removes its TUs."""
        tm_db.jobs.save_job(simple_job_factory("job1"))

        tm_db.jobs.delete_job("job1")

        assert tm_db.jobs.get_job("job1") is None
        assert tm_db.tus("en", "fr").get_stats().tu_count == 0
        with pytest.raises(JobNotFoundError, match="nope"):
            tm_db.jobs.delete_job("nope")

    def test_job_toc(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test the job listing of a pair."""
        tm_db.jobs.save_job(simple_job_factory("job1"), tm_store="shared")

        toc = tm_db.jobs.get_job_toc("en", "fr")

        assert toc == [
            {
                "jobGuid": "job1",
                "status": "done",
                "translationProvider": "mt",
                "updatedAt": "2024-01-01T00:00:00.000Z",
                "tmStore": "shared",
            }
        ]


@pytest.mark.unit
class TestWinnerRule:
    """Tests for winner election per guid."""

    def test_higher_quality_wins(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test q=90 beats a later q=80."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("a", [tu_factory("r", "s", "Hello", "Salut", q=80, ts=2000)])])
        tus.save_jobs([job_factory("b", [tu_factory("r", "s", "Hello", "Bonjour", q=90, ts=1000)])])

        winner = tus.get_entries([source_guid("r", "s", ["Hello"])])

        assert list(winner.values())[0].ntgt == ["Bonjour"]

    def test_later_timestamp_breaks_ties(
        self, tm_db: TMDatabase, tu_factory, job_factory
    ) -> None:
        """Test equal quality falls back to the latest ts."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("b", [tu_factory("r", "s", "Hello", "Récent", q=80, ts=2000)])])
        tus.save_jobs([job_factory("a", [tu_factory("r", "s", "Hello", "Ancien", q=80, ts=1000)])])

        guid = source_guid("r", "s", ["Hello"])

        assert tus.get_entries([guid])[guid].ntgt == ["Récent"]

    def test_exactly_one_winner(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test only one rank 1 row exists per guid."""
        tus = tm_db.tus("en", "fr")
        for i, q in enumerate((70, 90, 90, 50)):
            tus.save_jobs([job_factory(f"j{i}", [tu_factory("r", "s", "Hi", f"T{i}", q=q, ts=i)])])

        ranks = [
            row["rank"]
            for row in tm_db.conn.execute("SELECT rank FROM tus ORDER BY rank").fetchall()
        ]

        assert ranks == [1, 2, 3, 4]
        guid = source_guid("r", "s", ["Hi"])
        assert tus.get_entries([guid])[guid].ntgt == ["T2"]

    def test_deleting_winner_reelects(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test the runner-up wins once the winner's job is gone."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("low", [tu_factory("r", "s", "Hi", "Bas", q=50)])])
        tus.save_jobs([job_factory("high", [tu_factory("r", "s", "Hi", "Haut", q=90)])])

        tus.delete_jobs(["high"])
        guid = source_guid("r", "s", ["Hi"])

        assert tus.get_entries([guid])[guid].ntgt == ["Bas"]

    def test_inflight_never_beats_translation(
        self, tm_db: TMDatabase, tu_factory, job_factory
    ) -> None:
        """Test pending rows rank after real translations."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("done", [tu_factory("r", "s", "Hi", "Salut", q=10, ts=1)])])
        tus.save_jobs([job_factory("wip", [tu_factory("r", "s", "Hi", None, q=0, ts=9999)])])

        guid = source_guid("r", "s", ["Hi"])

        assert tus.get_entries([guid])[guid].ntgt == ["Salut"]

    def test_pairs_are_isolated(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test ranks are computed per language pair."""
        tm_db.tus("en", "fr").save_jobs([job_factory("fr", [tu_factory("r", "s", "Hi", "Salut")])])
        tm_db.tus("en", "de").save_jobs(
            [job_factory("de", [tu_factory("r", "s", "Hi", "Hallo")], target_lang="de")]
        )

        guid = source_guid("r", "s", ["Hi"])

        assert tm_db.tus("en", "fr").get_entries([guid])[guid].ntgt == ["Salut"]
        assert tm_db.tus("en", "de").get_entries([guid])[guid].ntgt == ["Hallo"]


@pytest.mark.unit
class TestDeltas:
    """Tests for job deltas against a remote TOC."""

    def _seed(self, tm_db: TMDatabase, simple_job_factory) -> None:
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([simple_job_factory("same")], "shared")
        tus.save_jobs([simple_job_factory("stale")], "shared")
        tus.save_jobs([simple_job_factory("foreign")], "other")
        tus.save_jobs([simple_job_factory("unassigned")])
        tus.save_jobs([simple_job_factory("gone")], "shared")

    def test_delta_classification(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test each relationship between local and remote jobs."""
        self._seed(tm_db, simple_job_factory)
        t = "2024-01-01T00:00:00.000Z"
        toc = _toc(
            {
                "b1": [("same", t), ("stale", "2024-06-01T00:00:00.000Z"), ("new", t)],
                "b2": [("foreign", t), ("unassigned", t)],
            }
        )

        deltas = {
            row.remote_job_guid or row.local_job_guid: row
            for row in tm_db.tus("en", "fr").get_job_deltas(toc, "shared")
        }

        assert set(deltas) == {"stale", "new", "foreign", "gone"}
        assert deltas["stale"].block_id == "b1"
        assert deltas["stale"].tm_store == "shared"
        assert deltas["new"].local_job_guid is None
        assert deltas["foreign"].tm_store == "other"
        assert deltas["gone"].remote_job_guid is None
        assert deltas["gone"].block_id is None

    def test_unassigned_local_only_job_is_a_delta(
        self, tm_db: TMDatabase, simple_job_factory
    ) -> None:
        """Test local jobs absent remotely are reported whatever their owner."""
        tm_db.tus("en", "fr").save_jobs([simple_job_factory("local")])

        deltas = tm_db.tus("en", "fr").get_job_deltas(_toc({}), "shared")

        assert [(d.local_job_guid, d.tm_store) for d in deltas] == [("local", None)]

    def test_valid_job_ids(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test only local jobs owned by the store stay in a block."""
        self._seed(tm_db, simple_job_factory)
        t = "2024-01-01T00:00:00.000Z"
        toc = _toc({"b1": [("same", t), ("foreign", t), ("new", t), ("stale", t)]})

        tus = tm_db.tus("en", "fr")

        assert tus.get_valid_job_ids(toc, "b1", "shared") == ["same", "stale"]
        assert tus.get_valid_job_ids(toc, "missing", "shared") == []

    def test_unsupported_toc_version(self, tm_db: TMDatabase) -> None:
        """Test TOC versions other than 1 are rejected."""
        with pytest.raises(InvalidTOCError, match="version 2"):
            tm_db.tus("en", "fr").get_job_deltas(_toc({}, v=2), "shared")


@pytest.mark.unit
class TestQueries:
    """Tests for lookups and search."""

    def test_search_and_lookup(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test filters on search and lookup."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs(
            [
                job_factory(
                    "j1",
                    [
                        tu_factory("a.json", "one", "Open file", "Ouvrir le fichier", q=90),
                        tu_factory("a.json", "two", "Close file", "Fermer le fichier", q=60),
                        tu_factory("b.json", "one", "Quit", "Quitter", q=90, nid="n-1"),
                    ],
                )
            ]
        )

        assert len(tus.search()) == 3
        assert [tu.sid for tu in tus.search(rid="a.json")] == ["one", "two"]
        assert [tu.sid for tu in tus.search(nsrc="file", min_q=80)] == ["one"]
        assert [tu.rid for tu in tus.search(ntgt="Quitter")] == ["b.json"]
        assert len(tus.search(limit=1, offset=2)) == 1
        assert [tu.rid for tu in tus.lookup(nid="n-1")] == ["b.json"]
        assert len(tus.lookup(rid="a.json", sid="two")) == 1

    def test_quality_distribution(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test winners are grouped by quality."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs(
            [
                job_factory(
                    "j1",
                    [
                        tu_factory("r", "1", "A", "A", q=90),
                        tu_factory("r", "2", "B", "B", q=90),
                        tu_factory("r", "3", "C", "C", q=40),
                    ],
                )
            ]
        )

        assert tus.get_quality_distribution() == {90: 2, 40: 1}

    def test_stats(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test counts of jobs, rows and guids."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("j1", [tu_factory("r", "1", "A", "A")])])
        tus.save_jobs([job_factory("j2", [tu_factory("r", "1", "A", "A2")])])

        stats = tus.get_stats()

        assert (stats.job_count, stats.tu_count, stats.distinct_guids) == (2, 2, 1)


@pytest.mark.unit
class TestMaintenance:
    """Tests for maintenance deletions."""

    def test_delete_over_rank(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test losers are deleted and their jobs touched."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([job_factory("old", [tu_factory("r", "s", "Hi", "Salut", q=50)])])
        tus.save_jobs([job_factory("new", [tu_factory("r", "s", "Hi", "Bonjour", q=90)])])
        guid = source_guid("r", "s", ["Hi"])

        keys = tus.get_over_rank_keys(1)
        result = tus.delete_tu_keys(keys)

        assert keys == [(guid, "old")]
        assert result.deleted_tus_count == 1
        assert result.touched_jobs_count == 1
        touched = tm_db.jobs.get_job("old")
        assert touched is not None
        assert touched.updated_at != "2024-01-01T00:00:00.000Z"
        assert touched.updated_at.endswith("Z")
        assert tm_db.jobs.get_job_row("old")["updated_at"] == touched.updated_at
        assert tus.get_entries([guid])[guid].ntgt == ["Bonjour"]

    def test_quality_keys(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test selection by exact quality."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs(
            [
                job_factory(
                    "j", [tu_factory("r", "1", "A", "A", q=0), tu_factory("r", "2", "B", "B")]
                )
            ]
        )

        assert tus.get_quality_keys(0) == [(source_guid("r", "1", ["A"]), "j")]

    def test_delete_empty_jobs(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test jobs without TUs are found and deleted."""
        tus = tm_db.tus("en", "fr")
        tus.save_jobs([simple_job_factory("full")])
        tus.save_jobs([Job(job_guid="empty", source_lang="en", target_lang="fr")])

        assert tus.delete_empty_jobs(dryrun=True) == 1
        assert tm_db.jobs.get_job_row("empty") is not None
        assert tus.delete_empty_jobs(dryrun=False) == 1
        assert tm_db.jobs.get_job_row("empty") is None
        assert tm_db.jobs.get_job_row("full") is not None

    def test_truncate(self, tm_db: TMDatabase, simple_job_factory) -> None:
        """Test truncation only affects its own pair."""
        tm_db.tus("en", "fr").save_jobs([simple_job_factory("fr")])
        tm_db.tus("en", "de").save_jobs([simple_job_factory("de", target_lang="de")])

        tm_db.tus("en", "fr").truncate()

        assert tm_db.jobs.get_available_lang_pairs() == [("en", "de")]


@pytest.mark.unit
class TestChannels:
    """Tests for channel translation status."""

    def test_translation_status_and_untranslated(
        self, tm_db: TMDatabase, tu_factory, job_factory
    ) -> None:
        """Test segments are classified against the per-language minimum quality."""
        segments = [
            ChannelSegment(
                channel="web",
                guid=source_guid("r", sid, [text]),
                rid="r",
                sid=sid,
                nsrc=[text],
                prj="site",
                words=words,
                plan={"fr": 70, "de": 70},
            )
            for sid, text, words in (("1", "Good", 2), ("2", "Weak", 3), ("3", "Missing", 5))
        ]
        tm_db.save_channel_segments("web", "en", segments)
        tm_db.tus("en", "fr").save_jobs(
            [
                job_factory(
                    "j",
                    [
                        tu_factory("r", "1", "Good", "Bien", q=90),
                        tu_factory("r", "2", "Weak", "Faible", q=50),
                    ],
                )
            ]
        )

        tus = tm_db.tus("en", "fr")
        status = tus.get_translation_status("web")
        untranslated = tus.get_untranslated_content("web")

        assert status == {
            "site": {
                "translated": 1,
                "low_quality": 1,
                "untranslated": 1,
                "translated_words": 2,
                "untranslated_words": 8,
            }
        }
        assert [tu.sid for tu in untranslated] == ["2", "3"]
        assert [tu.sid for tu in tus.get_untranslated_content("web", limit=1)] == ["2"]

    def test_language_outside_plan_is_ignored(self, tm_db: TMDatabase) -> None:
        """Test segments not planned for the target language are skipped."""
        tm_db.save_channel_segments(
            "web",
            "en",
            [
                ChannelSegment(
                    channel="web", guid="g", rid="r", sid="s", nsrc=["x"], plan={"it": 50}
                )
            ],
        )

        assert tm_db.tus("en", "fr").get_translation_status("web") == {}


@pytest.mark.unit
class TestBulkLoadMode:
    """Tests for bulk load mode."""

    def test_ranking_is_deferred(self, tm_db: TMDatabase, tu_factory, job_factory) -> None:
        """Test ranks are computed once on exit."""
        tus = tm_db.tus("en", "fr")

        with tm_db.bulk_load_mode():
            assert tm_db.bulk_mode is True
            tus.save_jobs([job_factory("a", [tu_factory("r", "s", "Hi", "A", q=10)])])
            tus.save_jobs([job_factory("b", [tu_factory("r", "s", "Hi", "B", q=20)])])
            pending = tm_db.conn.execute("SELECT rank FROM tus").fetchall()
            assert all(row["rank"] is None for row in pending)

        guid = source_guid("r", "s", ["Hi"])
        assert tm_db.bulk_mode is False
        assert tus.get_entries([guid])[guid].ntgt == ["B"]
        assert tm_db.conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"

    def test_bulk_mode_restored_on_error(self, tm_db: TMDatabase) -> None:
        """Test the connection leaves bulk mode when loading fails."""
        with pytest.raises(RuntimeError):
            with tm_db.bulk_load_mode():
                raise RuntimeError("boom")

        assert tm_db.bulk_mode is False
