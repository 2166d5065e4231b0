"""
Question providers: JSON question bank files and the built-in sample set.
"""
import json
import logging
import os
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ProviderError


class QuestionProvider(ABC):
    """Source of raw multiple-choice questions for a round."""

    @abstractmethod
    async def fetch(self, category: str, difficulty: str, count: int) -> List[dict]:
        """
        Fetch up to ``count`` questions.

        Each item is a dict with ``question``, ``correct_answer`` and ``options``.
        May return fewer than requested.

        Raises:
            ProviderError: If the category cannot be served at all
        """


SAMPLE_QUESTIONS: Dict[str, List[dict]] = {
    "science": [
        {"question": "What is the chemical symbol for water?", "correct_answer": "H2O",
         "options": ["H2O", "CO2", "NaCl", "O2"]},
        {"question": "Which planet is known as the Red Planet?", "correct_answer": "Mars",
         "options": ["Mars", "Jupiter", "Venus", "Saturn"]},
        {"question": "What gas do plants absorb from the atmosphere?", "correct_answer": "Carbon dioxide",
         "options": ["Oxygen", "Nitrogen", "Carbon dioxide", "Helium"]},
        {"question": "What is the hardest natural substance?", "correct_answer": "Diamond",
         "options": ["Gold", "Iron", "Quartz", "Diamond"]},
        {"question": "How many bones are in the adult human body?", "correct_answer": "206",
         "options": ["186", "206", "226", "246"]},
    ],
    "history": [
        {"question": "Who was the first President of India?", "correct_answer": "Rajendra Prasad",
         "options": ["Rajendra Prasad", "Jawaharlal Nehru", "Sardar Patel", "Dr. Ambedkar"]},
        {"question": "In which year did World War II end?", "correct_answer": "1945",
         "options": ["1939", "1944", "1945", "1950"]},
        {"question": "Which empire built Machu Picchu?", "correct_answer": "Inca",
         "options": ["Aztec", "Maya", "Inca", "Olmec"]},
        {"question": "Who was the first person to walk on the Moon?", "correct_answer": "Neil Armstrong",
         "options": ["Buzz Aldrin", "Neil Armstrong", "Yuri Gagarin", "John Glenn"]},
        {"question": "The Magna Carta was signed in which country?", "correct_answer": "England",
         "options": ["France", "England", "Spain", "Italy"]},
    ],
    "geography": [
        {"question": "What is the capital of Japan?", "correct_answer": "Tokyo",
         "options": ["Kyoto", "Osaka", "Tokyo", "Nagoya"]},
        {"question": "Which is the longest river in the world?", "correct_answer": "Nile",
         "options": ["Amazon", "Nile", "Yangtze", "Mississippi"]},
        {"question": "Which continent is the Sahara Desert on?", "correct_answer": "Africa",
         "options": ["Asia", "Africa", "Australia", "South America"]},
        {"question": "What is the smallest country in the world?", "correct_answer": "Vatican City",
         "options": ["Monaco", "Malta", "Vatican City", "San Marino"]},
        {"question": "Mount Everest lies on the border of Nepal and which country?", "correct_answer": "China",
         "options": ["India", "Bhutan", "China", "Pakistan"]},
    ],
    "general": [
        {"question": "How many days are in a leap year?", "correct_answer": "366",
         "options": ["364", "365", "366", "367"]},
        {"question": "What is 5 * 5?", "correct_answer": "25",
         "options": ["10", "20", "25", "55"]},
        {"question": "Which colour do you get by mixing blue and yellow?", "correct_answer": "Green",
         "options": ["Purple", "Green", "Orange", "Brown"]},
        {"question": "How many sides does a hexagon have?", "correct_answer": "6",
         "options": ["5", "6", "7", "8"]},
        {"question": "Which programming language is this bot written in?", "correct_answer": "Python",
         "options": ["Java", "Python", "Go", "Ruby"]},
    ],
}


class SampleQuestionProvider(QuestionProvider):
    """Small built-in question set used when the real provider fails."""

    def __init__(self, samples: Optional[Dict[str, List[dict]]] = None):
        self.samples = samples if samples is not None else SAMPLE_QUESTIONS

    async def fetch(self, category: str, difficulty: str, count: int) -> List[dict]:
        return [dict(q) for q in self.samples.get((category or "").lower(), [])[:max(0, count)]]

    def get_available_categories(self) -> List[str]:
        return list(self.samples.keys())


class JsonQuestionBank(QuestionProvider):
    """
    Serves questions from ``<category>.json`` files in a directory.

    Expected file structure:
    {
        "quiz": [
            {
                "question": str,
                "answer": str,
                "options": [str, ...],
                "difficulty": str  # Optional, matches any difficulty when absent
            }
        ]
    }
    """

    MAX_FILE_SIZE = 10 * 1024 * 1024

    def __init__(self, question_directory: str = "./questions/", rng: Optional[random.Random] = None):
        """
        Initialize the bank with its directory path.

        Args:
            question_directory: Path to directory containing JSON question files
            rng: Random source for shuffling, seeded in tests
        """
        self.question_directory = Path(question_directory)
        self.loaded_categories: Dict[str, List[dict]] = {}
        self.load_errors: List[str] = []
        self.logger = logging.getLogger(__name__)
        self._rng = rng or random.Random()

    def load_question_files(self) -> Dict[str, List[dict]]:
        """
        Load every JSON file in the question directory.

        Files that fail to load are recorded in ``load_errors`` and skipped.

        Returns:
            Dictionary mapping category names to raw question dicts
        """
        self.loaded_categories.clear()
        self.load_errors.clear()

        if not self.question_directory.exists():
            self.logger.warning(f"Question directory {self.question_directory} does not exist")
            self.load_errors.append(f"Question directory not found: {self.question_directory}")
            return self.loaded_categories

        try:
            json_files = sorted(self.question_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.question_directory}: {e}")
            self.logger.error(self.load_errors[-1])
            return self.loaded_categories

        for json_file in json_files:
            result = self._load_file_safely(json_file)
            if not result['success']:
                self.load_errors.append(f"{json_file.name}: {result['error']}")

        self.logger.info(
            f"Loaded {len(self.loaded_categories)} question categories from {self.question_directory}",
            extra={
                'event_type': 'question_bank_loaded',
                'categories': list(self.loaded_categories.keys()),
                'error_count': len(self.load_errors)
            }
        )
        return self.loaded_categories

    def _load_file_safely(self, json_file: Path) -> Dict[str, any]:
        try:
            if not os.access(json_file, os.R_OK):
                return {'success': False, 'error': "Permission denied: Cannot read file"}

            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB)"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not self.validate_bank_structure(data):
                return {'success': False, 'error': "Invalid question file structure"}

            questions = self._parse_questions(data)
            self.loaded_categories[json_file.stem.lower()] = questions
            self.logger.info(f"Loaded category '{json_file.stem}' with {len(questions)} questions")
            return {'success': True}

        except json.JSONDecodeError as e:
            return {'success': False, 'error': f"Invalid JSON: {e}"}
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

    def validate_bank_structure(self, data: dict) -> bool:
        """
        Validate that parsed JSON data has the question file structure.

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Question data must be a JSON object")
            return False

        quiz_array = data.get("quiz")
        if not isinstance(quiz_array, list) or not quiz_array:
            self.logger.error("'quiz' must be a non-empty array")
            return False

        for i, question_data in enumerate(quiz_array):
            if not isinstance(question_data, dict):
                self.logger.error(f"Question {i} must be an object")
                return False
            if not isinstance(question_data.get("question"), str):
                self.logger.error(f"Question {i} 'question' field must be a string")
                return False
            if not isinstance(question_data.get("answer"), str):
                self.logger.error(f"Question {i} 'answer' field must be a string")
                return False
            options = question_data.get("options")
            if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
                self.logger.error(f"Question {i} 'options' field must be an array of strings")
                return False

        return True

    def _parse_questions(self, data: dict) -> List[dict]:
        return [
            {
                "question": q["question"],
                "correct_answer": q["answer"],
                "options": list(q["options"]),
                "difficulty": q.get("difficulty"),
            }
            for q in data["quiz"]
        ]

    async def fetch(self, category: str, difficulty: str, count: int) -> List[dict]:
        key = (category or "").lower()
        if key not in self.loaded_categories:
            raise ProviderError(f"Invalid category: {category}")

        wanted = (difficulty or "").lower()
        pool = [
            q for q in self.loaded_categories[key]
            if not q.get("difficulty") or q["difficulty"].lower() == wanted
        ]
        if not pool:
            raise ProviderError(f"No {difficulty} questions found for category {category}")

        selected = self._rng.sample(pool, min(len(pool), max(0, count)))
        result = []
        for q in selected:
            options = list(q["options"])
            self._rng.shuffle(options)
            result.append({**q, "options": options})
        return result

    def get_available_categories(self) -> List[str]:
        return list(self.loaded_categories.keys())

    def get_loading_summary(self) -> Dict[str, any]:
        return {
            'total_categories': len(self.loaded_categories),
            'has_errors': bool(self.load_errors),
            'errors': self.load_errors.copy(),
            'question_directory': str(self.question_directory),
            'available_categories': self.get_available_categories()
        }
