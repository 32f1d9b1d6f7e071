from __future__ import annotations

import textwrap
from typing import Any

from .completion import UpstreamFormatError

STRUCTURE_SYSTEM_PROMPT = "You are a syllabus parser that outputs JSON only."
PLAN_SYSTEM_PROMPT = "You are a study planning assistant that outputs JSON only."


def build_structure_prompt(syllabus_text: str) -> str:
    schema = textwrap.dedent(
        """
        {
          "course": {
            "title": "string (course name/title)",
            "instructor": "string (instructor name if found)"
          },
          "timeline": [
            { "date": "string (any dates mentioned)", "what": "string (what happens on that date)" }
          ],
          "topics": [
            { "topic": "string (main topic/chapter/module)", "notes": "string (any additional details)" }
          ],
          "assessments": [
            { "name": "string (exam/assignment name)", "due": "string (due date if found)", "weight": "string (percentage/points if found)" }
          ],
          "policies": ["string (important policies/rules)"]
        }
        """
    ).strip()

    return (
        "Extract the following structured information from this syllabus text "
        "and return ONLY valid JSON:\n\n"
        f"{schema}\n\n"
        "Extract dates, topics, assignments, exams, and important policies. "
        "Be comprehensive but accurate.\n\n"
        f"Syllabus text:\n{syllabus_text}"
    )


def _names(items: Any, key: str) -> list[str]:
    if not isinstance(items, list):
        return []
    names = []
    for item in items:
        if isinstance(item, dict) and isinstance(item.get(key), str) and item[key].strip():
            names.append(item[key].strip())
        elif isinstance(item, str) and item.strip():
            names.append(item.strip())
    return names


def build_plan_prompt(outline: Any) -> str:
    """
    Turn the structured outline from the Structure step into the study-plan
    prompt. Raises UpstreamFormatError if the outline is not a JSON object.
    """
    if not isinstance(outline, dict):
        raise UpstreamFormatError("Structured syllabus was not a JSON object")

    course = outline.get("course") if isinstance(outline.get("course"), dict) else {}
    course_title = course.get("title") if isinstance(course.get("title"), str) else ""
    topics = ", ".join(_names(outline.get("topics"), "topic"))
    assessments = ", ".join(_names(outline.get("assessments"), "name"))

    schema = textwrap.dedent(
        """
        {
          "title": "Study Plan for [Course Name]",
          "modules": [
            {
              "topic": "Module/Topic Name",
              "tasks": [
                {
                  "description": "Specific actionable task",
                  "resources": [
                    { "title": "Resource name", "url": "https://example.com or search term" }
                  ]
                }
              ]
            }
          ]
        }
        """
    ).strip()

    return (
        "Based on this structured syllabus data, create a comprehensive study plan "
        "with modules and tasks.\n\n"
        f"Course: {course_title.strip() or 'Unknown Course'}\n"
        f"Topics: {topics}\n"
        f"Assessments: {assessments}\n\n"
        "Create modules that logically group related topics, and for each module "
        "provide specific, actionable study tasks with helpful resources.\n\n"
        "Return your response as a JSON object with this exact structure:\n"
        f"{schema}\n\n"
        "Make tasks specific and actionable. Provide 3-5 modules with 2-4 tasks each. "
        "Include relevant online resources (YouTube, Khan Academy, etc.) or search terms."
    )
