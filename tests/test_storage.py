"""
Tests for persistence and orchestration: sample DB, head store, config loading,
teaching session and the command line.
"""
import contextlib
import io
import json
import os
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path

import numpy as np

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from teachable import db  # noqa: E402
from teachable.config_loader import heads_dir, load_config  # noqa: E402
from teachable.embedders import FunctionEmbedder  # noqa: E402
from teachable.errors import EmptyEmbeddingError, HeadError, HeadNotReadyError  # noqa: E402
from teachable.head import Head  # noqa: E402
from teachable.live import LoopState  # noqa: E402
from teachable.main import main  # noqa: E402
from teachable.session import TeachingSession  # noqa: E402
from teachable.store import HeadStore, export_setup, parse_setup, sanitize_name  # noqa: E402
from teachable.trainer import CentroidTrainer  # noqa: E402


class TestSampleDb(unittest.TestCase):

    def setUp(self):
        self.conn = sqlite3.connect(":memory:")
        db.init_schema(self.conn)
        db.init_schema(self.conn)

    def tearDown(self):
        self.conn.close()

    def test_insert_and_read(self):
        db.insert_sample(self.conn, "s1", 0, "mug", np.array([1.0, 2.0], dtype=np.float32))
        db.insert_sample(self.conn, "s1", 1, "pen", np.array([3.0, 4.0], dtype=np.float32))
        db.insert_sample(self.conn, "s2", 0, "other", np.array([5.0], dtype=np.float32))
        rows = db.get_samples(self.conn, "s1")
        self.assertEqual([(r[0], r[1]) for r in rows], [(0, "mug"), (1, "pen")])
        np.testing.assert_array_equal(rows[1][2], [3.0, 4.0])
        self.assertEqual(db.session_labels(self.conn, "s1"), ["mug", "pen"])
        self.assertEqual(db.list_sessions(self.conn), [("s1", 2), ("s2", 1)])
        self.assertEqual(db.delete_session(self.conn, "s1"), 2)
        self.assertEqual(db.get_samples(self.conn, "s1"), [])

    def test_replay_matches_direct_training(self):
        rng = np.random.default_rng(3)
        direct = CentroidTrainer(["a", "b"])
        for i in range(6):
            v = rng.normal(size=5).astype(np.float32)
            direct.add_sample(i % 2, v)
            db.insert_sample(self.conn, "s", i % 2, "ab"[i % 2], v)
        replayed = CentroidTrainer(["a", "b"])
        self.assertEqual(db.replay_samples(replayed, db.get_samples(self.conn, "s")), 6)
        for x, y in zip(direct.finalize().centroids, replayed.finalize().centroids):
            np.testing.assert_allclose(x, y, atol=1e-6)

    def test_labels_and_indices_skip_empty_classes(self):
        db.insert_sample(self.conn, "s", 0, "A", np.array([1.0, 0.0], dtype=np.float32))
        db.insert_sample(self.conn, "s", 2, "C", np.array([0.0, 1.0], dtype=np.float32))
        self.assertEqual(db.session_labels(self.conn, "s"), ["A", "C"])
        self.assertEqual(db.class_index_for(self.conn, "s", "C"), 2)
        self.assertEqual(db.class_index_for(self.conn, "s", "D"), 3)
        self.assertEqual(db.class_index_for(self.conn, "new", "A"), 0)

    def test_replay_matches_by_label(self):
        db.insert_sample(self.conn, "s", 0, "A", np.array([1.0, 0.0], dtype=np.float32))
        db.insert_sample(self.conn, "s", 2, "C", np.array([0.0, 1.0], dtype=np.float32))
        db.insert_sample(self.conn, "s", 1, "gone", np.array([1.0, 1.0], dtype=np.float32))
        t = CentroidTrainer(["C", "A"])
        self.assertEqual(db.replay_samples(t, db.get_samples(self.conn, "s")), 2)
        self.assertEqual(t.counts, [1, 1])
        np.testing.assert_allclose(t.mean(0), [0.0, 1.0], atol=1e-6)

    def test_delete_class_samples(self):
        for i, label in enumerate("ABC"):
            db.insert_sample(self.conn, "s", i, label, np.eye(3, dtype=np.float32)[i])
        self.assertEqual(db.delete_class_samples(self.conn, "s", 1), 1)
        self.assertEqual([r[:2] for r in db.get_samples(self.conn, "s")], [(0, "A"), (2, "C")])
        self.assertEqual(db.delete_class_samples(self.conn, "s", 0, shift=True), 1)
        self.assertEqual([r[:2] for r in db.get_samples(self.conn, "s")], [(1, "C")])

    def test_db_path_from_config(self):
        self.assertEqual(db.get_db_path({"database": {"path": "/tmp/x.db"}}), Path("/tmp/x.db"))
        self.assertTrue(str(db.get_db_path({})).endswith("teachable.db"))


class TestHeadStore(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = HeadStore(Path(self._tmp.name) / "heads")

    def tearDown(self):
        self._tmp.cleanup()

    def test_sanitize(self):
        self.assertEqual(sanitize_name("  a/b:c "), "a_b_c")
        with self.assertRaises(HeadError):
            sanitize_name("   ")

    def test_save_load_list_remove(self):
        head = Head.centroid(["a", "b"], [[1.0, 0.0], [0.0, 1.0]])
        path = self.store.save("cups", head)
        self.assertTrue(path.is_file())
        self.assertTrue(self.store.exists("cups"))
        self.assertEqual(self.store.load("cups").class_labels, ("a", "b"))
        (self.store.heads_dir / "broken.json").write_text("{oops", encoding="utf-8")
        infos = self.store.list_heads()
        self.assertEqual([i.name for i in infos], ["cups"])
        self.assertEqual(infos[0].classes, ["a", "b"])
        catalog = json.loads(self.store.export_catalog())
        self.assertEqual(catalog["detections"][0]["name"], "cups")
        self.assertTrue(self.store.remove("cups"))
        self.assertFalse(self.store.remove("cups"))

    def test_missing_and_unusable(self):
        with self.assertRaises(FileNotFoundError):
            self.store.load("nope")
        with self.assertRaises(HeadNotReadyError):
            self.store.save("bad", Head.centroid(["a"], []))
        self.store.heads_dir.mkdir(parents=True, exist_ok=True)
        (self.store.heads_dir / "half.json").write_text(
            json.dumps({"type": "centroid", "classes": ["a", "b"], "centroids": [[1.0]]}), encoding="utf-8")
        with self.assertRaises(HeadNotReadyError):
            self.store.load("half")

    def test_list_missing_dir(self):
        self.assertEqual(self.store.list_heads(), [])

    def test_setup_roundtrip(self):
        text = export_setup("cups", ["mug", "pen"], tag="kitchen")
        setup = parse_setup(text)
        self.assertEqual((setup.name, setup.classes, setup.tag), ("cups", ["mug", "pen"], "kitchen"))
        with self.assertRaises(HeadError):
            parse_setup(json.dumps({"classes": ["x"]}))
        with self.assertRaises(HeadError):
            parse_setup("not json")


class TestConfig(unittest.TestCase):

    def test_defaults_when_missing(self):
        cfg = load_config("/nonexistent/config.yaml")
        self.assertEqual(cfg["classifier"]["smooth"], 5)
        self.assertEqual(cfg["trainer"]["dimension_policy"], "reset")

    def test_merge_sections(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "config.yaml"
            p.write_text("classifier:\n  smooth: 2\nstorage:\n  heads_dir: /tmp/h\n", encoding="utf-8")
            cfg = load_config(p)
        self.assertEqual(cfg["classifier"]["smooth"], 2)
        self.assertEqual(cfg["classifier"]["classify_every"], 2)
        self.assertEqual(heads_dir(cfg), Path("/tmp/h"))

    def test_bundled_config_loads(self):
        cfg = load_config(Path(_REPO_ROOT) / "teachable" / "config.yaml")
        self.assertIn("logging", cfg)


class TestTeachingSession(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.config = load_config(root / "missing.yaml")
        self.config["storage"] = {"heads_dir": str(root / "heads")}
        self.config["classifier"] = {"smooth": 0, "classify_every": 1, "log_every": 15}
        self.conn = sqlite3.connect(":memory:")
        db.init_schema(self.conn)
        self.session = TeachingSession(self.config, conn=self.conn)

    def tearDown(self):
        self.conn.close()
        self._tmp.cleanup()

    def test_teach_train_classify(self):
        s = self.session
        self.assertEqual(s.trainer.labels, ["class_A", "class_B"])
        s.add_sample(0, [1.0, 0.0, 0.0])
        s.add_sample(1, [0.0, 1.0, 0.0])
        trained = []
        s.on_head_trained(lambda name, head: trained.append(name))
        s.train_and_apply("demo")
        self.assertEqual(trained, ["demo"])
        self.assertTrue(s.store.exists("demo"))
        self.assertIs(s.loop.state, LoopState.READY)
        s.start()
        self.assertEqual(s.tick([0.9, 0.1, 0.0])[0], "class_A")
        s.pause()
        self.assertIsNone(s.tick([0.9, 0.1, 0.0]))
        self.assertEqual(len(db.get_samples(self.conn, s.name)), 2)

    def test_add_sample_from_frame_targets_current_class(self):
        s = self.session
        idx = s.add_class("cup")
        s.add_sample_from_frame("frame", FunctionEmbedder(lambda f: [0.0, 0.0, 1.0]))
        self.assertEqual(s.trainer.count(idx), 1)
        with self.assertRaises(EmptyEmbeddingError):
            s.add_sample_from_frame("frame", FunctionEmbedder(lambda f: None))

    def test_create_and_edit_detection(self):
        s = self.session
        s.create_detection("toys", ["car", "ball"])
        self.assertEqual(s.name, "toys")
        self.assertIs(s.loop.state, LoopState.IDLE)
        s.add_sample(0, [1.0, 0.0])
        s.add_sample(1, [0.0, 1.0])
        s.train_and_apply()
        s.create_detection("other")
        head = s.load_for_editing("toys")
        self.assertEqual(s.trainer.labels, ["car", "ball"])
        self.assertEqual(s.trainer.counts, [0, 0])
        self.assertEqual(s.loop.head_name, "toys")
        self.assertEqual(head.num_classes, 2)
        s.load_and_apply("toys")
        self.assertIs(s.loop.state, LoopState.READY)

    def test_setup_inject_export(self):
        s = self.session
        setup = s.apply_setup(json.dumps({"name": "fruit", "classes": ["apple", "pear"]}))
        self.assertEqual(setup.name, "fruit")
        self.assertEqual(s.trainer.labels, ["apple", "pear"])
        out = json.loads(s.export_setup(version="1"))
        self.assertEqual(out["name"], "fruit")
        self.assertEqual(out["classes"], ["apple", "pear"])
        self.assertEqual(out["version"], "1")

    def test_rebuild_from_records(self):
        s = self.session
        s.add_sample(0, [1.0, 0.0])
        s.add_sample(0, [1.0, 0.0])
        s.add_sample(1, [0.0, 1.0])
        s.trainer.reset()
        self.assertEqual(s.rebuild_from_records(), 3)
        self.assertEqual(s.trainer.counts, [2, 1])

    def test_rebuild_after_remove_class(self):
        s = self.session
        s.add_class("C")
        for i in range(3):
            s.add_sample(i, np.eye(3)[i])
        self.assertEqual(s.remove_class(0), "class_A")
        s.trainer.reset()
        self.assertEqual(s.rebuild_from_records(), 2)
        self.assertEqual(s.trainer.labels, ["class_B", "C"])
        self.assertEqual(s.trainer.counts, [1, 1])
        np.testing.assert_allclose(s.trainer.mean(1), [0.0, 0.0, 1.0], atol=1e-6)

    def test_rebuild_after_clear_class(self):
        s = self.session
        s.add_sample(0, [1.0, 0.0])
        s.add_sample(0, [1.0, 0.0])
        s.add_sample(1, [0.0, 1.0])
        s.clear_class(0)
        self.assertEqual(s.trainer.counts, [0, 1])
        s.trainer.reset()
        self.assertEqual(s.rebuild_from_records(), 1)
        self.assertEqual(s.trainer.counts, [0, 1])

    def test_switch_embedder(self):
        s = self.session
        s.add_sample(0, np.ones(8))
        s.switch_embedder()
        self.assertEqual(s.trainer.dim, -1)
        self.assertEqual(s.trainer.counts, [0, 0])
        self.assertEqual(db.get_samples(self.conn, s.name), [])
        s.add_sample(1, np.ones(8))
        s.trainer.reset()
        self.assertEqual(s.rebuild_from_records(), 1)
        self.assertEqual(s.trainer.counts, [0, 1])


class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.cfg_path = root / "config.yaml"
        self.cfg_path.write_text(
            f"storage:\n  heads_dir: {root / 'heads'}\n"
            f"database:\n  path: {root / 'samples.db'}\n"
            "classifier:\n  smooth: 0\nlogging:\n  level: WARNING\n  structured: false\n",
            encoding="utf-8",
        )
        np.save(root / "mug.npy", np.array([[1.0, 0.0, 0.0], [0.9, 0.1, 0.0]], dtype=np.float32))
        np.save(root / "pen.npy", np.array([[0.0, 1.0, 0.0]], dtype=np.float32))
        np.save(root / "stream.npy", np.array([[0.8, 0.2, 0.0], [0.1, 0.9, 0.0]], dtype=np.float32))
        self.root = root

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, *argv):
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            main(["--config", str(self.cfg_path), *argv])
        return buf.getvalue()

    def test_full_flow(self):
        self._run("add-samples", "--session", "desk", "--label", "mug", "--embeddings", str(self.root / "mug.npy"))
        self._run("add-samples", "--session", "desk", "--label", "pen", "--embeddings", str(self.root / "pen.npy"))
        out = self._run("train", "--session", "desk")
        self.assertIn("mug=2", out)
        self.assertIn("pen=1", out)
        self.assertIn("desk", self._run("list"))
        self.assertIn("[1] pen", self._run("info", "desk"))
        lines = self._run("classify", "--head", "desk", "--embeddings", str(self.root / "stream.npy")).splitlines()
        self.assertEqual([line.split("\t")[1] for line in lines], ["mug", "pen"])
        self.assertEqual(json.loads(self._run("export"))["detections"][0]["classes"], ["mug", "pen"])
        self.assertIn("Removed", self._run("remove", "desk"))

    def test_train_with_empty_middle_class(self):
        config = load_config(self.cfg_path)
        config["trainer"] = {"session": "s", "classes": ["A", "B", "C"]}
        conn = sqlite3.connect(str(self.root / "samples.db"))
        try:
            db.init_schema(conn)
            session = TeachingSession(config, conn=conn)
            session.add_sample(0, [1.0, 0.0, 0.0])
            session.add_sample(2, [0.0, 0.0, 1.0])
        finally:
            conn.close()
        out = self._run("add-samples", "--session", "s", "--label", "C", "--embeddings", str(self.root / "pen.npy"))
        self.assertIn("(class 2)", out)
        out = self._run("train", "--session", "s")
        self.assertIn("A=1, C=2", out)
        self.assertIn("[1] C", self._run("info", "s"))

    def test_errors_exit(self):
        with self.assertRaises(SystemExit):
            self._run("train", "--session", "empty")
        with self.assertRaises(SystemExit):
            self._run("info", "missing")
        with self.assertRaises(SystemExit):
            self._run("remove", "missing")


if __name__ == '__main__':
    unittest.main()
