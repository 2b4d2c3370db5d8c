"""Results summaries, leaderboard and CSV export.

A question counts as answered when any result exists for it, including a
recorded time-up with an empty answer. The summary and the CSV export both
go through ``_first_results`` so they always agree.
"""

import csv
import io
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from quizmaster.domain import ParticipantResult, Quiz, QuizSession

OPTION_CORRECT = 'correct'
OPTION_SELECTED_INCORRECT = 'selected_incorrect'
OPTION_NEUTRAL = 'neutral'

STATE_CORRECT = 'correct'
STATE_INCORRECT = 'incorrect'
STATE_NO_ANSWER = 'no_answer'


@dataclass(frozen=True)
class OptionTag:
    text: str
    tag: str


@dataclass(frozen=True)
class QuestionBreakdown:
    question_id: str
    text: str
    correct_answer: str
    state: str
    result: Optional[ParticipantResult]
    options: Tuple[OptionTag, ...]

    def to_dict(self):
        return {
            'questionId': self.question_id,
            'text': self.text,
            'correctAnswer': self.correct_answer,
            'state': self.state,
            'result': self.result.to_dict() if self.result else None,
            'options': [{'text': o.text, 'tag': o.tag} for o in self.options],
        }


@dataclass(frozen=True)
class ResultSummary:
    total_questions: int
    answered_questions: int
    correct_answers: int
    total_score: int
    average_time_spent: float
    accuracy: int
    questions: Tuple[QuestionBreakdown, ...]

    def to_dict(self):
        return {
            'totalQuestions': self.total_questions,
            'answeredQuestions': self.answered_questions,
            'correctAnswers': self.correct_answers,
            'totalScore': self.total_score,
            'averageTimeSpent': self.average_time_spent,
            'accuracy': self.accuracy,
            'questions': [q.to_dict() for q in self.questions],
        }


@dataclass(frozen=True)
class LeaderboardRow:
    participant_id: str
    name: str
    score: int
    correct: int
    answered: int

    def to_dict(self):
        return {
            'participantId': self.participant_id,
            'name': self.name,
            'score': self.score,
            'correct': self.correct,
            'answered': self.answered,
        }


def _first_results(quiz: Quiz, session: QuizSession,
                   participant_id: Optional[str]) -> Dict[str, ParticipantResult]:
    found: Dict[str, ParticipantResult] = {}
    question_ids = {q.id for q in quiz.questions}
    for result in session.results_for(participant_id):
        if result.question_id in question_ids and result.question_id not in found:
            found[result.question_id] = result
    return found


def _tag_options(options, correct_answer: str, result: Optional[ParticipantResult]) -> Tuple[OptionTag, ...]:
    tags = []
    for option in options:
        if option == correct_answer:
            tag = OPTION_CORRECT
        elif result is not None and result.answer == option:
            tag = OPTION_SELECTED_INCORRECT
        else:
            tag = OPTION_NEUTRAL
        tags.append(OptionTag(option, tag))
    return tuple(tags)


def summarize(quiz: Quiz, session: QuizSession, participant_id: Optional[str] = None) -> ResultSummary:
    relevant = session.results_for(participant_id)
    first = _first_results(quiz, session, participant_id)

    breakdown = []
    for question in quiz.questions:
        result = first.get(question.id)
        if result is None:
            state = STATE_NO_ANSWER
        elif result.is_correct:
            state = STATE_CORRECT
        else:
            state = STATE_INCORRECT
        breakdown.append(QuestionBreakdown(
            question_id=question.id,
            text=question.text,
            correct_answer=question.correct_answer,
            state=state,
            result=result,
            options=_tag_options(question.options, question.correct_answer, result),
        ))

    total_questions = len(quiz.questions)
    correct = sum(1 for r in relevant if r.is_correct)
    average = round(sum(r.time_spent for r in relevant) / len(relevant), 2) if relevant else 0
    return ResultSummary(
        total_questions=total_questions,
        answered_questions=len(first),
        correct_answers=correct,
        total_score=sum(r.score for r in relevant),
        average_time_spent=average,
        accuracy=round(correct / total_questions * 100) if total_questions else 0,
        questions=tuple(breakdown),
    )


def leaderboard(session: QuizSession) -> List[LeaderboardRow]:
    """Rank participants by summed score.

    Ties keep participant order (join order, then ids that only appear in
    results in first-submission order); ``sorted`` is stable.
    """
    names = {p.id: p.name for p in session.participants}
    order = [p.id for p in session.participants]
    totals: Dict[str, List[int]] = {pid: [0, 0, 0] for pid in order}
    for result in session.results:
        if result.participant_id not in totals:
            totals[result.participant_id] = [0, 0, 0]
            order.append(result.participant_id)
        entry = totals[result.participant_id]
        entry[0] += result.score
        entry[1] += 1 if result.is_correct else 0
        entry[2] += 1
    rows = [
        LeaderboardRow(
            participant_id=pid,
            name=names.get(pid, pid),
            score=totals[pid][0],
            correct=totals[pid][1],
            answered=totals[pid][2],
        )
        for pid in order
    ]
    return sorted(rows, key=lambda row: -row.score)


def export_csv(quiz: Quiz, session: QuizSession, participant_id: Optional[str] = None) -> str:
    first = _first_results(quiz, session, participant_id)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(['Question', 'Your Answer', 'Correct Answer', 'Result', 'Time Spent', 'Score'])
    for question in quiz.questions:
        result = first.get(question.id)
        if result is None:
            writer.writerow([question.text, 'Not answered', question.correct_answer, 'No answer', 0, 0])
            continue
        writer.writerow([
            question.text,
            result.answer,
            question.correct_answer,
            'Correct' if result.is_correct else 'Incorrect',
            f'{result.time_spent}s',
            result.score,
        ])
    return buffer.getvalue()
