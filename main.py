"""PersonFinder - interactive person search

Simple CLI that walks the disambiguation funnel in a terminal.
"""

import argparse
import asyncio

from personfinder.models.schemas import AnswerPayload, FinalResults, NoMatch, Question
from personfinder.services.flow import DisambiguationFlow


def print_question(question: Question) -> None:
    print(f"\n[?] {question.title}")
    for i, option in enumerate(question.options, 1):
        print(f"  {i}. {option.label}")


def read_answer(question: Question) -> str:
    """Accept an option number, an option id or free text."""
    raw = input("> ").strip()
    if raw.isdigit():
        index = int(raw) - 1
        if 0 <= index < len(question.options):
            return question.options[index].id
    return raw or "none"


def print_results(final: FinalResults) -> None:
    print(f"\n[*] {len(final.results)} result(s){' (cached search)' if final.cache_used else ''}")
    for result in final.results:
        print(f"\n{'='*50}")
        print(f"{result.full_name}  (confidence {result.confidence:.2f})")
        for label, value in (
            ("Profession", result.profession),
            ("Location", result.location),
            ("Employer", result.employer),
            ("Education", ", ".join(result.education)),
            ("Emails", ", ".join(result.emails)),
            ("Phones", ", ".join(result.phones)),
            ("LinkedIn", result.social.linkedin),
        ):
            if value:
                print(f"   {label}: {value}")


async def run_search(query: str) -> None:
    """Run the funnel for the given query until results or no match."""
    print(f"Query: {query}")
    print("-" * 50)

    flow = DisambiguationFlow()
    started = await flow.start(query)
    artifact = started.question

    while isinstance(artifact, Question):
        print_question(artifact)
        selected = read_answer(artifact)
        artifact = await flow.advance(
            started.session_id,
            AnswerPayload(question_id=artifact.question_id, selected=selected),
        )

    if isinstance(artifact, NoMatch):
        print("\n[!] No match: every question was answered with 'None of these'.")
    elif isinstance(artifact, FinalResults):
        print_results(artifact)


def main():
    parser = argparse.ArgumentParser(description="PersonFinder interactive search")
    parser.add_argument("--query", "-q", required=True, help="Person to search for")

    args = parser.parse_args()

    asyncio.run(run_search(args.query))


if __name__ == "__main__":
    main()
