"""
Problem catalog: linear-equation problems with their expected solution steps.

Read-only reference data for local validation, final-answer checks and hints.
"""

from typing import Optional

from schemas import ExpectedStep, Problem, ProblemDifficulty


def _steps(*rows: tuple[str, str, str]) -> tuple[ExpectedStep, ...]:
    """rows are (description, expression, operation) in solving order."""
    return tuple(
        ExpectedStep(
            step_number=i,
            description=description,
            expression=expression,
            operation_label=operation,
        )
        for i, (description, expression, operation) in enumerate(rows, start=1)
    )


SIMPLIFY = "simplify"

LINEAR_EQUATION_PROBLEMS: list[Problem] = [
    # --- EASY: one-step equations ---
    Problem(
        id="le_easy_01",
        difficulty=ProblemDifficulty.EASY,
        text="Solve for x: x + 5 = 12",
        statement_expression="x + 5 = 12",
        answer="7",
        answer_expression="x = 7",
        expected_steps=_steps(
            ("Subtract 5 from both sides", "x + 5 - 5 = 12 - 5", "subtract 5 from both sides"),
            ("Simplify", "x = 7", SIMPLIFY),
        ),
        tags=("one-step", "addition"),
    ),
    Problem(
        id="le_easy_02",
        difficulty=ProblemDifficulty.EASY,
        text="Solve for x: x - 8 = 3",
        statement_expression="x - 8 = 3",
        answer="11",
        answer_expression="x = 11",
        expected_steps=_steps(
            ("Add 8 to both sides", "x - 8 + 8 = 3 + 8", "add 8 to both sides"),
            ("Simplify", "x = 11", SIMPLIFY),
        ),
        tags=("one-step", "subtraction"),
    ),
    Problem(
        id="le_easy_03",
        difficulty=ProblemDifficulty.EASY,
        text="Solve for x: 3x = 15",
        statement_expression="3x = 15",
        answer="5",
        answer_expression="x = 5",
        expected_steps=_steps(
            ("Divide both sides by 3", "\\frac{3x}{3} = \\frac{15}{3}", "divide both sides by 3"),
            ("Simplify", "x = 5", SIMPLIFY),
        ),
        tags=("one-step", "multiplication"),
    ),
    Problem(
        id="le_easy_04",
        difficulty=ProblemDifficulty.EASY,
        text="Solve for x: x/4 = 2",
        statement_expression="\\frac{x}{4} = 2",
        answer="8",
        answer_expression="x = 8",
        expected_steps=_steps(
            ("Multiply both sides by 4", "4 \\cdot \\frac{x}{4} = 2 \\cdot 4", "multiply both sides by 4"),
            ("Simplify", "x = 8", SIMPLIFY),
        ),
        tags=("one-step", "division"),
    ),
    Problem(
        id="le_easy_05",
        difficulty=ProblemDifficulty.EASY,
        text="Solve for x: 2x = 18",
        statement_expression="2x = 18",
        answer="9",
        answer_expression="x = 9",
        expected_steps=_steps(
            ("Divide both sides by 2", "\\frac{2x}{2} = \\frac{18}{2}", "divide both sides by 2"),
            ("Simplify", "x = 9", SIMPLIFY),
        ),
        tags=("one-step", "multiplication"),
    ),

    # --- MEDIUM: two-step equations ---
    Problem(
        id="le_medium_01",
        difficulty=ProblemDifficulty.MEDIUM,
        text="Solve for x: 2x + 3 = 11",
        statement_expression="2x + 3 = 11",
        answer="4",
        answer_expression="x = 4",
        expected_steps=_steps(
            ("Subtract 3 from both sides", "2x + 3 - 3 = 11 - 3", "subtract 3 from both sides"),
            ("Simplify", "2x = 8", SIMPLIFY),
            ("Divide both sides by 2", "\\frac{2x}{2} = \\frac{8}{2}", "divide both sides by 2"),
            ("Simplify", "x = 4", SIMPLIFY),
        ),
        tags=("two-step", "addition", "multiplication"),
    ),
    Problem(
        id="le_medium_02",
        difficulty=ProblemDifficulty.MEDIUM,
        text="Solve for x: 5x - 7 = 18",
        statement_expression="5x - 7 = 18",
        answer="5",
        answer_expression="x = 5",
        expected_steps=_steps(
            ("Add 7 to both sides", "5x - 7 + 7 = 18 + 7", "add 7 to both sides"),
            ("Simplify", "5x = 25", SIMPLIFY),
            ("Divide both sides by 5", "\\frac{5x}{5} = \\frac{25}{5}", "divide both sides by 5"),
            ("Simplify", "x = 5", SIMPLIFY),
        ),
        tags=("two-step", "subtraction", "multiplication"),
    ),
    Problem(
        id="le_medium_03",
        difficulty=ProblemDifficulty.MEDIUM,
        text="Solve for x: 3x + 4 = 19",
        statement_expression="3x + 4 = 19",
        answer="5",
        answer_expression="x = 5",
        expected_steps=_steps(
            ("Subtract 4 from both sides", "3x + 4 - 4 = 19 - 4", "subtract 4 from both sides"),
            ("Simplify", "3x = 15", SIMPLIFY),
            ("Divide both sides by 3", "\\frac{3x}{3} = \\frac{15}{3}", "divide both sides by 3"),
            ("Simplify", "x = 5", SIMPLIFY),
        ),
        tags=("two-step", "addition", "multiplication"),
    ),
    Problem(
        id="le_medium_04",
        difficulty=ProblemDifficulty.MEDIUM,
        text="Solve for x: x/2 + 5 = 9",
        statement_expression="\\frac{x}{2} + 5 = 9",
        answer="8",
        answer_expression="x = 8",
        expected_steps=_steps(
            ("Subtract 5 from both sides", "\\frac{x}{2} + 5 - 5 = 9 - 5", "subtract 5 from both sides"),
            ("Simplify", "\\frac{x}{2} = 4", SIMPLIFY),
            ("Multiply both sides by 2", "2 \\cdot \\frac{x}{2} = 4 \\cdot 2", "multiply both sides by 2"),
            ("Simplify", "x = 8", SIMPLIFY),
        ),
        tags=("two-step", "division", "addition"),
    ),
    Problem(
        id="le_medium_05",
        difficulty=ProblemDifficulty.MEDIUM,
        text="Solve for x: 4x - 9 = 7",
        statement_expression="4x - 9 = 7",
        answer="4",
        answer_expression="x = 4",
        expected_steps=_steps(
            ("Add 9 to both sides", "4x - 9 + 9 = 7 + 9", "add 9 to both sides"),
            ("Simplify", "4x = 16", SIMPLIFY),
            ("Divide both sides by 4", "\\frac{4x}{4} = \\frac{16}{4}", "divide both sides by 4"),
            ("Simplify", "x = 4", SIMPLIFY),
        ),
        tags=("two-step", "subtraction", "multiplication"),
    ),

    # --- HARD: variables on both sides ---
    Problem(
        id="le_hard_01",
        difficulty=ProblemDifficulty.HARD,
        text="Solve for x: 3x + 7 = 2x + 15",
        statement_expression="3x + 7 = 2x + 15",
        answer="8",
        answer_expression="x = 8",
        expected_steps=_steps(
            ("Subtract 2x from both sides", "3x - 2x + 7 = 2x - 2x + 15", "subtract 2x from both sides"),
            ("Simplify", "x + 7 = 15", SIMPLIFY),
            ("Subtract 7 from both sides", "x + 7 - 7 = 15 - 7", "subtract 7 from both sides"),
            ("Simplify", "x = 8", SIMPLIFY),
        ),
        tags=("multi-step", "variables-both-sides"),
    ),
    Problem(
        id="le_hard_02",
        difficulty=ProblemDifficulty.HARD,
        text="Solve for x: 5x - 4 = 3x + 10",
        statement_expression="5x - 4 = 3x + 10",
        answer="7",
        answer_expression="x = 7",
        expected_steps=_steps(
            ("Subtract 3x from both sides", "5x - 3x - 4 = 3x - 3x + 10", "subtract 3x from both sides"),
            ("Simplify", "2x - 4 = 10", SIMPLIFY),
            ("Add 4 to both sides", "2x - 4 + 4 = 10 + 4", "add 4 to both sides"),
            ("Simplify", "2x = 14", SIMPLIFY),
            ("Divide both sides by 2", "\\frac{2x}{2} = \\frac{14}{2}", "divide both sides by 2"),
            ("Simplify", "x = 7", SIMPLIFY),
        ),
        tags=("multi-step", "variables-both-sides"),
    ),
]


class ProblemCatalog:
    """Lookup over a fixed list of problems."""

    def __init__(self, problems: Optional[list[Problem]] = None):
        self._problems = list(problems if problems is not None else LINEAR_EQUATION_PROBLEMS)
        self._by_id = {p.id: p for p in self._problems}

    def __len__(self) -> int:
        return len(self._problems)

    def get_problem_by_id(self, problem_id: str) -> Optional[Problem]:
        return self._by_id.get(problem_id)

    def get_problems_by_difficulty(self, difficulty: ProblemDifficulty) -> list[Problem]:
        return [p for p in self._problems if p.difficulty == difficulty]

    def get_next_problem(self, current_id: str) -> Optional[Problem]:
        ids = [p.id for p in self._problems]
        if current_id not in ids:
            return None
        index = ids.index(current_id)
        return self._problems[index + 1] if index + 1 < len(self._problems) else None

    def get_previous_problem(self, current_id: str) -> Optional[Problem]:
        ids = [p.id for p in self._problems]
        if current_id not in ids:
            return None
        index = ids.index(current_id)
        return self._problems[index - 1] if index > 0 else None

    def get_problem_stats(self) -> dict:
        return {
            "total": len(self._problems),
            **{d.value: len(self.get_problems_by_difficulty(d)) for d in ProblemDifficulty},
        }


default_catalog = ProblemCatalog()
