"""
Seed Catalog — demo content for local development and tests.

Loads categories, lessons, quizzes (with questions and options), learning
paths and the achievement catalog. Idempotent: existing rows are replaced.

Usage:
    flask --app app seed-catalog            # Seed into the configured database
    flask --app app seed-catalog --reset    # Clear the catalog first
    python seed_catalog.py                  # Same as the first form
"""

from __future__ import annotations

import json
import logging
import sys

import click
from flask.cli import with_appcontext

logger = logging.getLogger(__name__)


CATEGORIES = [
    ("html-fundamentals", "HTML Fundamentals"),
    ("css-styling", "CSS Styling"),
    ("javascript-basics", "JavaScript Basics"),
    ("react-nextjs", "React & Next.js"),
]

# (id, title, category, xp_reward, position); None falls back to the default lesson XP
LESSONS = [
    ("html-intro", "HTML Introduction", "html-fundamentals", None, 1),
    ("html-forms", "HTML Forms and Inputs", "html-fundamentals", 15, 2),
    ("css-fundamentals", "CSS Fundamentals", "css-styling", None, 1),
    ("css-flexbox", "Flexbox Layout", "css-styling", 15, 2),
    ("js-variables", "JavaScript Variables and Data Types", "javascript-basics", None, 1),
    ("js-functions", "Functions and Scope", "javascript-basics", 20, 2),
    ("react-components", "Components and Props", "react-nextjs", 25, 1),
]

# Each question: (id, text, [(option_id, text, is_correct), ...])
QUIZZES = [
    {
        "id": "html-basics-quiz",
        "title": "HTML Basics Quiz",
        "category": "html-fundamentals",
        "difficulty": "BEGINNER",
        "questions": [
            ("html-q1", "What is the correct HTML element for the largest heading?", [
                ("html-q1-a", "<h6>", False),
                ("html-q1-b", "<h1>", True),
                ("html-q1-c", "<heading>", False),
                ("html-q1-d", "<header>", False),
            ]),
            ("html-q2", "Which HTML attribute is used to define inline styles?", [
                ("html-q2-a", "class", False),
                ("html-q2-b", "style", True),
                ("html-q2-c", "css", False),
                ("html-q2-d", "styles", False),
            ]),
            ("html-q3", "What does HTML stand for?", [
                ("html-q3-a", "HyperText Markup Language", True),
                ("html-q3-b", "High Tech Modern Language", False),
                ("html-q3-c", "Home Tool Markup Language", False),
                ("html-q3-d", "Hyperlinks and Text Markup Language", False),
            ]),
            ("html-q4", "Which HTML element is used to create a hyperlink?", [
                ("html-q4-a", "<link>", False),
                ("html-q4-b", "<a>", True),
                ("html-q4-c", "<url>", False),
                ("html-q4-d", "<href>", False),
            ]),
            ("html-q5", "HTML tag names are case-sensitive.", [
                ("html-q5-a", "True", False),
                ("html-q5-b", "False", True),
            ]),
        ],
    },
    {
        "id": "css-fundamentals-quiz",
        "title": "CSS Fundamentals Quiz",
        "category": "css-styling",
        "difficulty": "INTERMEDIATE",
        "questions": [
            ("css-q1", "Which CSS property is used to change the text color?", [
                ("css-q1-a", "text-color", False),
                ("css-q1-b", "color", True),
                ("css-q1-c", "font-color", False),
                ("css-q1-d", "text-style", False),
            ]),
            ("css-q2", "What does CSS stand for?", [
                ("css-q2-a", "Computer Style Sheets", False),
                ("css-q2-b", "Creative Style Sheets", False),
                ("css-q2-c", "Cascading Style Sheets", True),
                ("css-q2-d", "Colorful Style Sheets", False),
            ]),
        ],
    },
]

LEARNING_PATHS = [
    {
        "id": "web-foundations",
        "title": "Web Foundations",
        "difficulty": "BEGINNER",
        "lessons": ["html-intro", "html-forms", "css-fundamentals"],
        "quizzes": ["html-basics-quiz"],
    },
    {
        "id": "frontend-developer",
        "title": "Frontend Developer",
        "difficulty": "INTERMEDIATE",
        "lessons": ["css-flexbox", "js-variables", "js-functions", "react-components"],
        "quizzes": ["css-fundamentals-quiz"],
    },
]

ACHIEVEMENTS = [
    ("first-quiz", "First Quiz", "Complete your first quiz", "🎯", 50,
     {"type": "quiz_completion", "count": 1}),
    ("week-warrior", "Week Warrior", "Maintain a 7-day streak", "🔥", 100,
     {"type": "streak", "days": 7}),
    ("html-master", "HTML Master", "Complete all HTML lessons", "📄", 200,
     {"type": "lesson_completion", "category": "html-fundamentals", "count": "all"}),
    ("css-ninja", "CSS Ninja", "Complete all CSS lessons", "🎨", 200,
     {"type": "lesson_completion", "category": "css-styling", "count": "all"}),
    ("js-wizard", "JavaScript Wizard", "Complete all JavaScript lessons", "⚡", 300,
     {"type": "lesson_completion", "category": "javascript-basics", "count": "all"}),
    ("perfect-score", "Perfect Score", "Get 100% on any quiz", "💯", 150,
     {"type": "quiz_perfect_score"}),
    ("speed-demon", "Speed Demon", "Complete a quiz in under 2 minutes", "⚡", 75,
     {"type": "quiz_speed", "timeLimitSeconds": 120}),
    ("knowledge-seeker", "Knowledge Seeker", "Complete 25 lessons", "📚", 300,
     {"type": "lesson_completion", "count": 25}),
]


def clear(db) -> None:
    """Remove all catalog content. User progress rows are left alone."""
    for table in ("path_items", "learning_paths", "question_options", "questions",
                  "quizzes", "lessons", "categories", "achievements"):
        db.execute(f"DELETE FROM {table}")
    db.commit()


def seed(db) -> dict:
    """Seed the demo catalog. Returns a summary of row counts."""
    db.executemany("INSERT OR REPLACE INTO categories (id, name) VALUES (?, ?)", CATEGORIES)
    db.executemany(
        "INSERT OR REPLACE INTO lessons (id, title, category_id, xp_reward, position) "
        "VALUES (?, ?, ?, ?, ?)",
        LESSONS,
    )

    question_count = 0
    for quiz in QUIZZES:
        db.execute(
            "INSERT OR REPLACE INTO quizzes (id, title, category_id, difficulty) VALUES (?, ?, ?, ?)",
            (quiz["id"], quiz["title"], quiz["category"], quiz["difficulty"]),
        )
        for position, (question_id, text, options) in enumerate(quiz["questions"], 1):
            db.execute(
                "INSERT OR REPLACE INTO questions (id, quiz_id, position, text) VALUES (?, ?, ?, ?)",
                (question_id, quiz["id"], position, text),
            )
            db.executemany(
                "INSERT OR REPLACE INTO question_options (id, question_id, text, is_correct) "
                "VALUES (?, ?, ?, ?)",
                [(oid, question_id, otext, int(correct)) for oid, otext, correct in options],
            )
            question_count += 1

    for path in LEARNING_PATHS:
        db.execute(
            "INSERT OR REPLACE INTO learning_paths (id, title, difficulty) VALUES (?, ?, ?)",
            (path["id"], path["title"], path["difficulty"]),
        )
        items = [("lesson", lid) for lid in path["lessons"]] + [("quiz", qid) for qid in path["quizzes"]]
        db.executemany(
            "INSERT OR REPLACE INTO path_items (path_id, item_type, item_id, position) "
            "VALUES (?, ?, ?, ?)",
            [(path["id"], kind, item_id, pos) for pos, (kind, item_id) in enumerate(items)],
        )

    db.executemany(
        "INSERT OR REPLACE INTO achievements (id, title, description, icon, xp_reward, condition) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [(aid, title, desc, icon, xp, json.dumps(cond)) for aid, title, desc, icon, xp, cond in ACHIEVEMENTS],
    )
    db.commit()

    summary = {
        "categories": len(CATEGORIES),
        "lessons": len(LESSONS),
        "quizzes": len(QUIZZES),
        "questions": question_count,
        "learning_paths": len(LEARNING_PATHS),
        "achievements": len(ACHIEVEMENTS),
    }
    logger.info("Seeded catalog: %s", summary)
    return summary


@click.command("seed-catalog")
@click.option("--reset", is_flag=True, help="Clear the catalog before seeding.")
@with_appcontext
def seed_catalog_command(reset: bool) -> None:
    """Load the demo content catalog."""
    from database import get_db, init_db, run_migrations

    init_db()
    run_migrations()
    db = get_db()
    if reset:
        clear(db)
    summary = seed(db)
    click.echo(", ".join(f"{k}={v}" for k, v in summary.items()))


def init_app(app) -> None:
    app.cli.add_command(seed_catalog_command)


if __name__ == "__main__":
    from app import create_app

    app = create_app()
    with app.app_context():
        from database import get_db, init_db, run_migrations

        init_db()
        run_migrations()
        if "--reset" in sys.argv:
            clear(get_db())
        print(seed(get_db()))
