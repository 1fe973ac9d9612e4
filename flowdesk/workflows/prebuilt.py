"""Pre-built workflow templates shipped with flowdesk.

Five cross-plugin workflows are provided:

* **Meeting to Tasks** -- fetch recent meeting transcripts, propose tasks
  from them, and create the proposed tasks.
* **Email to Calendar** -- find scheduling emails and create a calendar
  event from the extracted date and time.
* **Project Planning** -- create a project note, find a free slot, and book
  a planning meeting in it.
* **Meeting Follow-up** -- fetch a transcript, summarise it and extract key
  decisions in parallel, then email the attendees.
* **Weekly Review** -- collect the week's events and completed tasks in
  parallel and write a summary note.

Trigger phrases, keywords and domain nouns are configuration data kept next
to the templates they select; the trigger detector owns the scoring.
"""

from flowdesk.workflows.catalog import WorkflowCatalog
from flowdesk.workflows.models import StepTemplate, TriggerRule, WorkflowTemplate


def get_prebuilt_workflows() -> list[WorkflowTemplate]:
    """Return every pre-built template in declaration order."""
    return [
        _meeting_to_tasks(),
        _email_to_calendar(),
        _project_planning(),
        _meeting_follow_up(),
        _weekly_review(),
    ]


def get_prebuilt_triggers() -> list[TriggerRule]:
    """Return the trigger rule of every pre-built template."""
    return [
        TriggerRule(
            template_id="meeting-to-tasks",
            phrases=[
                "meeting tasks",
                "action items from meeting",
                "action items from my meeting",
                "create tasks from meeting",
                "create tasks from my meeting",
            ],
            keywords=["meeting", "transcript", "action", "items", "tasks", "todo"],
            domains=["meeting", "transcript"],
        ),
        TriggerRule(
            template_id="email-to-calendar",
            phrases=[
                "schedule from email",
                "create meeting from email",
                "email to calendar",
                "add email to calendar",
            ],
            patterns=[r"\b(?:add|put)\b.*\bemails?\b.*\b(?:calendar|agenda)\b"],
            keywords=["email", "calendar", "schedule", "invite", "appointment"],
            domains=["email", "mail", "calendar"],
        ),
        TriggerRule(
            template_id="project-planning",
            phrases=[
                "plan project",
                "plan a project",
                "create project plan",
                "project tasks",
                "break down project",
            ],
            keywords=["project", "plan", "planning", "milestones", "kickoff"],
            domains=["project"],
        ),
        TriggerRule(
            template_id="meeting-follow-up",
            phrases=[
                "meeting follow up",
                "meeting follow-up",
                "send meeting summary",
                "meeting recap",
            ],
            keywords=["meeting", "recap", "summary", "follow", "decisions", "attendees"],
            domains=["meeting", "email"],
        ),
        TriggerRule(
            template_id="weekly-review",
            phrases=["weekly review", "week summary", "weekly report", "review my week"],
            keywords=["weekly", "week", "review", "accomplished", "summary"],
            domains=["calendar", "tasks", "week"],
        ),
    ]


def build_default_catalog() -> WorkflowCatalog:
    """Register every pre-built template with its trigger rule.

    Raises:
        ConfigurationError: If a pre-built template is malformed.
    """
    catalog = WorkflowCatalog()
    triggers = {rule.template_id: rule for rule in get_prebuilt_triggers()}
    for template in get_prebuilt_workflows():
        catalog.register(template, triggers.get(template.id))
    return catalog


# ---------------------------------------------------------------------------
# Individual builders
# ---------------------------------------------------------------------------


def _meeting_to_tasks() -> WorkflowTemplate:
    """Build the Meeting to Tasks workflow."""
    return WorkflowTemplate(
        id="meeting-to-tasks",
        name="Meeting to Tasks",
        description="Extract action items from a meeting transcript and create tasks",
        steps=[
            StepTemplate(
                id="get-transcript",
                name="Get Meeting Transcripts",
                description="Retrieve recent meeting transcripts",
                plugin_name="MeetingPlugin",
                function_name="GetMeetingTranscripts",
                parameters={"count": 5, "daysBack": 7},
                output_mappings={"result": "meetingTranscripts"},
                max_retries=2,
            ),
            StepTemplate(
                id="propose-tasks",
                name="Propose Tasks from Meeting",
                description="Generate task proposals from meeting content",
                plugin_name="MeetingPlugin",
                function_name="ProposeTasksFromMeeting",
                parameters={
                    "transcript": "{{meetingTranscripts}}",
                    "meetingId": "{{selectedMeetingId}}",
                },
                required_parameters=["transcript"],
                depends_on=["get-transcript"],
                output_mappings={"result": "taskProposals"},
                max_retries=1,
            ),
            StepTemplate(
                id="create-tasks",
                name="Create Tasks",
                description="Create the proposed tasks in the task list",
                plugin_name="MeetingPlugin",
                function_name="CreateTasksFromProposals",
                parameters={"taskProposalsJson": "{{taskProposals}}"},
                required_parameters=["taskProposalsJson"],
                depends_on=["propose-tasks"],
                output_mappings={"result": "createdTasks"},
                max_retries=1,
            ),
        ],
        default_parameters={"selectedMeetingId": ""},
    )


def _email_to_calendar() -> WorkflowTemplate:
    """Build the Email to Calendar workflow."""
    return WorkflowTemplate(
        id="email-to-calendar",
        name="Email to Calendar",
        description="Create calendar events from email content",
        steps=[
            StepTemplate(
                id="search-emails",
                name="Search Recent Emails",
                description="Find recent emails that might contain meeting requests",
                plugin_name="MailPlugin",
                function_name="GetRecentEmails",
                parameters={"count": 10, "searchQuery": "meeting OR schedule OR appointment"},
                output_mappings={
                    "result": "recentEmails",
                    "subject": "extractedSubject",
                    "attendees": "extractedAttendees",
                },
                max_retries=2,
            ),
            StepTemplate(
                id="create-calendar-event",
                name="Create Calendar Event",
                description="Create a calendar event based on email content",
                plugin_name="CalendarPlugin",
                function_name="CreateCalendarEvent",
                parameters={
                    "subject": "{{extractedSubject}}",
                    "startDateTime": "{{extractedDateTime}}",
                    "durationMinutes": 60,
                    "attendees": "{{extractedAttendees}}",
                },
                required_parameters=["startDateTime"],
                depends_on=["search-emails"],
                output_mappings={"result": "createdEvent"},
            ),
        ],
        default_parameters={"extractedSubject": "Meeting"},
    )


def _project_planning() -> WorkflowTemplate:
    """Build the Project Planning workflow."""
    return WorkflowTemplate(
        id="project-planning",
        name="Project Planning",
        description="Break down a project into tasks and schedule planning meetings",
        steps=[
            StepTemplate(
                id="create-project-note",
                name="Create Project Note",
                description="Create a note with project details",
                plugin_name="ToDoPlugin",
                function_name="CreateNote",
                parameters={
                    "noteContent": "Project: {{userMessage}}",
                    "details": "Project planning initiated on {{timestamp}}",
                    "priority": "high",
                },
                output_mappings={"result": "projectNote"},
                max_retries=1,
            ),
            StepTemplate(
                id="find-planning-slot",
                name="Find Planning Slot",
                description="Find the next free slot for a planning meeting",
                plugin_name="CalendarPlugin",
                function_name="FindNextAvailableSlot",
                parameters={"durationMinutes": 60, "fromDate": "{{primaryDate}}"},
                depends_on=["create-project-note"],
                output_mappings={"result": "availableSlot"},
                max_retries=2,
            ),
            StepTemplate(
                id="create-planning-event",
                name="Create Planning Event",
                description="Create the planning meeting event",
                plugin_name="CalendarPlugin",
                function_name="CreateCalendarEvent",
                parameters={
                    "subject": "Project Planning: {{userMessage}}",
                    "startDateTime": "{{availableSlot}}",
                    "durationMinutes": 60,
                    "description": "Planning meeting for project: {{userMessage}}",
                },
                required_parameters=["startDateTime"],
                depends_on=["find-planning-slot"],
                output_mappings={"result": "planningMeeting"},
            ),
        ],
    )


def _meeting_follow_up() -> WorkflowTemplate:
    """Build the Meeting Follow-up workflow."""
    return WorkflowTemplate(
        id="meeting-follow-up",
        name="Meeting Follow-up",
        description="Summarize a meeting and send a follow-up email",
        steps=[
            StepTemplate(
                id="get-meeting-transcript",
                name="Get Meeting Transcript",
                description="Retrieve the meeting transcript",
                plugin_name="MeetingPlugin",
                function_name="GetMeetingTranscript",
                parameters={"meetingId": "{{selectedMeetingId}}"},
                output_mappings={"result": "transcript", "subject": "meetingSubject"},
                max_retries=2,
            ),
            StepTemplate(
                id="summarize-meeting",
                name="Summarize Meeting",
                description="Create a meeting summary",
                plugin_name="MeetingPlugin",
                function_name="SummarizeMeeting",
                parameters={"transcript": "{{transcript}}"},
                required_parameters=["transcript"],
                depends_on=["get-meeting-transcript"],
                output_mappings={"result": "summary"},
                max_retries=1,
            ),
            StepTemplate(
                id="extract-decisions",
                name="Extract Key Decisions",
                description="Extract key decisions from the meeting",
                plugin_name="MeetingPlugin",
                function_name="ExtractKeyDecisions",
                parameters={"transcript": "{{transcript}}"},
                required_parameters=["transcript"],
                depends_on=["get-meeting-transcript"],
                output_mappings={"result": "decisions"},
                optional=True,
                max_retries=1,
            ),
            StepTemplate(
                id="send-follow-up",
                name="Send Follow-up Email",
                description="Send the meeting summary by email",
                plugin_name="MailPlugin",
                function_name="SendEmail",
                parameters={
                    "toEmail": "{{primaryEmail}}",
                    "subject": "Meeting Follow-up: {{meetingSubject}}",
                    "body": "Meeting Summary:\n{{summary}}\n\nKey Decisions:\n{{decisions}}",
                    "importance": "normal",
                },
                required_parameters=["toEmail"],
                depends_on=["summarize-meeting", "extract-decisions"],
                output_mappings={"result": "emailSent"},
            ),
        ],
        default_parameters={"selectedMeetingId": "", "meetingSubject": "our meeting"},
    )


def _weekly_review() -> WorkflowTemplate:
    """Build the Weekly Review workflow."""
    return WorkflowTemplate(
        id="weekly-review",
        name="Weekly Review",
        description="Generate a weekly summary of activities",
        steps=[
            StepTemplate(
                id="get-events",
                name="Get Calendar Events",
                description="Retrieve this week's calendar events",
                plugin_name="CalendarPlugin",
                function_name="GetCalendarEvents",
                parameters={"daysBack": 7},
                output_mappings={"result": "weeklyEvents"},
                max_retries=2,
            ),
            StepTemplate(
                id="get-completed-tasks",
                name="Get Completed Tasks",
                description="Retrieve tasks completed this week",
                plugin_name="ToDoPlugin",
                function_name="GetRecentNotes",
                parameters={"count": 20, "includeCompleted": True},
                output_mappings={"result": "weeklyTasks"},
                max_retries=2,
            ),
            StepTemplate(
                id="create-summary-note",
                name="Create Weekly Summary",
                description="Create a note with the weekly summary",
                plugin_name="ToDoPlugin",
                function_name="CreateNote",
                parameters={
                    "noteContent": "Weekly Review - {{timestamp}}",
                    "details": "Events: {{weeklyEvents}}\nTasks: {{weeklyTasks}}",
                    "priority": "normal",
                },
                depends_on=["get-events", "get-completed-tasks"],
                output_mappings={"result": "weeklyReview"},
            ),
        ],
    )
