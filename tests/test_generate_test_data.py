import importlib
import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import db
import generate_test_data


class SeedDataTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._prev_db_path = os.environ.get("DB_PATH")
        os.environ["DB_PATH"] = os.path.join(self._tmpdir.name, "seed.db")

        importlib.reload(db)
        db.init()

    def tearDown(self):
        db._pool.close_all()
        if self._prev_db_path is not None:
            os.environ["DB_PATH"] = self._prev_db_path
        else:
            os.environ.pop("DB_PATH", None)

        importlib.reload(db)
        self._tmpdir.cleanup()

    def test_seed_creates_learners_with_activity(self):
        generate_test_data.seed(days=3, seed_value=1)

        for user_id in generate_test_data.USERS:
            learner = db.get_learner(user_id)
            self.assertIsNotNone(learner)
            self.assertTrue(learner["baseline_assessed_at"])
            self.assertGreater(learner["xp_total"], 0)
            self.assertEqual(len(db.list_exercise_log(user_id)), 4)

        self.assertIsNotNone(db.get_ladder_progress("base", "alice"))
        self.assertIsNone(db.get_ladder_progress("channel", "alice"))
        self.assertIsNotNone(db.get_ladder_progress("channel", "lena"))
        self.assertIsNone(db.get_ladder_progress("base", "lena"))

        marco = db.get_ladder_progress("channel", "marco")
        self.assertIsNotNone(marco["primary_channel"])
        self.assertNotEqual(marco["primary_channel"], marco["secondary_channel"])

    def test_seed_is_rerunnable(self):
        generate_test_data.seed(days=1, seed_value=2)
        generate_test_data.seed(days=1, seed_value=3)
        self.assertEqual(len(db.list_exercise_log("peter")), 3)


if __name__ == "__main__":
    unittest.main()
