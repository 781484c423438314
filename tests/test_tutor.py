import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import tutor
from schemas import QuizQuestion

QUESTION = QuizQuestion(
    id="q1",
    question="What does a loss function measure?",
    options=["A) Prediction error", "B) Dataset size", "C) Training time"],
    correct="A",
    explanation="The loss measures how wrong the predictions are.",
)


def _response(status_code, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    response.json.return_value = payload
    return response


class QuizFeedbackTests(unittest.TestCase):
    def setUp(self):
        patcher = patch.dict(
            "os.environ",
            {"GOOGLE_API_KEY": "test-key", "GEMINI_MODEL": "gemini-test", "GEMINI_API_BASE": "https://llm.example/v1"},
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_prompt_uses_option_texts(self):
        prompt = tutor.build_feedback_prompt(QUESTION, "b", "Training and Loss", "Training Concepts")
        self.assertIn("learn about Training Concepts", prompt)
        self.assertIn("Student's Answer: B) Dataset size", prompt)
        self.assertIn("Correct Answer: A) Prediction error", prompt)
        self.assertIn("Lesson: Training and Loss", prompt)

    def test_successful_call_returns_text(self):
        payload = {"candidates": [{"content": {"parts": [{"text": "  Close, but not quite.  "}]}}]}
        with patch("tutor.requests.post", return_value=_response(200, payload)) as post:
            text = tutor.generate_quiz_feedback(QUESTION, "B", "Training and Loss", "Training Concepts")

        self.assertEqual(text, "Close, but not quite.")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://llm.example/v1/models/gemini-test:generateContent")
        self.assertEqual(kwargs["params"], {"key": "test-key"})
        self.assertEqual(kwargs["json"]["generationConfig"], {"temperature": 0.7, "maxOutputTokens": 256})

    def test_error_status_returns_none(self):
        with patch("tutor.requests.post", return_value=_response(503, text="overloaded")):
            self.assertIsNone(tutor.generate_quiz_feedback(QUESTION, "B", "T", "Topic"))

    def test_unexpected_body_returns_none(self):
        with patch("tutor.requests.post", return_value=_response(200, {"candidates": []})):
            self.assertIsNone(tutor.generate_quiz_feedback(QUESTION, "B", "T", "Topic"))

    def test_transport_error_raises_feedback_error(self):
        with patch("tutor.requests.post", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(tutor.FeedbackError):
                tutor.generate_quiz_feedback(QUESTION, "B", "T", "Topic")

    def test_missing_key_skips_request(self):
        with patch.dict("os.environ", {"GOOGLE_API_KEY": ""}), patch("tutor.requests.post") as post:
            self.assertIsNone(tutor.generate_quiz_feedback(QUESTION, "B", "T", "Topic"))
            self.assertFalse(tutor.feedback_enabled())
        post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
