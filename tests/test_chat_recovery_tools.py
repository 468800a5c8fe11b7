#!/usr/bin/env python3
"""
Unit tests for Chat Recovery Tools

Tests cover:
- Message content union and validation
- Each parsing strategy and the strategy chain
- Content analysis, ranking, code evolution
- Questions, decisions, timeline, status, summary
- Recovery pipeline, narrative formatting, crash reports
- Settings and the CLI
"""

import importlib
import json
import re
from pathlib import Path

import pytest
from loguru import logger
from typer.testing import CliRunner

import chat_recovery_tools
from chat_recovery_tools import (
    ChatRecoveryEngine,
    CodeEvolution,
    FilterSpec,
    Formatter,
    JsonFormatter,
    Message,
    MessageFilter,
    ParseFunction,
    PartsContent,
    RecentMessage,
    Recoverable,
    RecoveryContext,
    RecoveryResult,
    RecoverySettings,
    Role,
    Strategy,
    StrategyChain,
    StructuredContent,
    TableFormatter,
    TextContent,
    analyze_messages,
    create_crash_report,
    determine_current_status,
    extract_code_evolution,
    extract_entities,
    extract_keywords,
    extract_latest_state,
    extract_open_questions,
    extract_text,
    format_recovered_context,
    generate_summary,
    generate_timeline,
    get_formatter,
    identify_decision_points,
    is_message_like,
    parse_balanced_lines,
    parse_chunks,
    parse_direct,
    parse_object_literals,
    rank_files,
    rank_topics,
    recover_crashed_conversation,
)
from chat_recovery_tools import cli
from chat_recovery_tools.cli import app
from chat_recovery_tools.evolution import describe_evolution, grouping_key
from chat_recovery_tools.log_config import configure_logging
from chat_recovery_tools.models import CodeSnippet
from chat_recovery_tools.synthesis import (
    CRASH_STATE_NOTE,
    NO_MESSAGES_STATE,
    extract_question_topic,
    extract_recent_messages,
    truncate,
)

runner = CliRunner()


# ── Helpers ───────────────────────────────────────────────────────────────────

def msg(role: str, content, timestamp=None) -> dict:
    """Raw transcript message."""
    data = {"role": role, "content": content}
    if timestamp is not None:
        data["timestamp"] = timestamp
    return data


def to_messages(raw: list) -> list:
    return [Message.from_dict(m) for m in raw]


def write_transcript(path: Path, raw: list, indent=2) -> Path:
    path.write_text(json.dumps(raw, indent=indent), encoding="utf-8")
    return path


def write_one_per_line(path: Path, lines: list) -> Path:
    """Array with one compact object per line; lines are written verbatim."""
    path.write_text("[\n" + ",\n".join(lines) + "\n]\n", encoding="utf-8")
    return path


CONVERSATION = [
    msg("human", "Please help me fix the login bug in src/auth.py", 1000),
    msg("assistant", "I've fixed the token check in src/auth.py. The login flow works now.", 2000),
    msg("human", "Great. Can you also add tests for the login flow?", 3000),
    msg("assistant", "Here are tests in tests/test_auth.py:\n```python\ndef test_login():\n    assert login()\n```", 4000),
]

CORRUPTED_LINE = '{"role": "assistant", "content": "he said "hi" to me"}'


@pytest.fixture
def transcript(tmp_path):
    """A well-formed transcript file"""
    return write_transcript(tmp_path / "conversation.json", CONVERSATION)


@pytest.fixture
def degraded_transcript(tmp_path):
    """One object per line with a single corrupted element"""
    lines = [json.dumps(m) for m in CONVERSATION]
    lines.insert(2, CORRUPTED_LINE)
    return write_one_per_line(tmp_path / "degraded.json", lines)


# ── Models ────────────────────────────────────────────────────────────────────

class TestMessageContent:
    """Test the content union and text extraction"""

    def test_text_content(self):
        """Test that string content is returned unchanged"""
        assert extract_text(TextContent("hello\nworld")) == "hello\nworld"

    def test_parts_content_joined_with_space(self):
        """Test that parts join with a space and non-text blocks contribute nothing"""
        content = PartsContent(("a", {"type": "text", "text": "b"}, {"type": "image"}))
        assert extract_text(content) == "a b "

    def test_structured_content(self):
        """Test that other JSON values render as compact JSON and null as empty"""
        assert extract_text(StructuredContent({"k": 1})) == '{"k":1}'
        assert extract_text(StructuredContent(None)) == ""

    def test_from_dict_classifies_content(self):
        """Test that raw content is classified into the union"""
        assert isinstance(Message.from_dict(msg("human", "x")).content, TextContent)
        assert isinstance(Message.from_dict(msg("human", ["x"])).content, PartsContent)
        assert isinstance(Message.from_dict(msg("human", 5)).content, StructuredContent)

    def test_from_dict_timestamp(self):
        """Test that numeric timestamps are kept and bools are ignored"""
        assert Message.from_dict(msg("human", "x", 1500.0)).timestamp == 1500
        assert Message.from_dict(msg("human", "x", True)).timestamp is None
        assert Message.from_dict(msg("human", "x", "yesterday")).timestamp is None
        assert Message.from_dict(msg("human", "x", float("inf"))).timestamp is None

    def test_preview(self):
        """Test preview truncation and newline flattening"""
        message = Message.from_dict(msg("human", "line one\nline two"))
        assert message.preview(8) == "line one"
        assert message.preview(0) == "line one line two"


class TestMessageValidator:
    """Test candidate validation"""

    def test_accepts_valid_roles(self):
        """Test that each valid role is accepted"""
        for role in ("human", "assistant", "system"):
            assert is_message_like({"role": role, "content": "x"})

    def test_accepts_null_content(self):
        """Test that explicit null content counts as present"""
        assert is_message_like({"role": "human", "content": None})

    def test_rejects_invalid(self):
        """Test rejection of non-objects, bad roles and missing content"""
        assert not is_message_like(["role", "human"])
        assert not is_message_like({"content": "x"})
        assert not is_message_like({"role": "bot", "content": "x"})
        assert not is_message_like({"role": "", "content": "x"})
        assert not is_message_like({"role": "human"})


class TestMessageFilter:
    """Test filter composition"""

    def test_from_spec(self):
        """Test role, time, search and limit filters together"""
        messages = to_messages([
            msg("human", "redux question", 100),
            msg("assistant", "redux answer", 200),
            msg("human", "redux follow-up", 300),
            msg("human", "redux no timestamp"),
            msg("human", "other topic", 400),
        ])
        spec = FilterSpec(since=150, search="REDUX").with_roles(Role.HUMAN)
        assert [m.text for m in MessageFilter.from_spec(spec).apply(messages)] == ["redux follow-up"]

    def test_multiple_roles(self):
        """Test a spec naming several roles keeps each of them"""
        messages = to_messages([msg("human", "a"), msg("assistant", "b"), msg("system", "c")])
        spec = FilterSpec().with_roles(Role.HUMAN, Role.SYSTEM)
        assert [m.text for m in MessageFilter.from_spec(spec)(messages)] == ["a", "c"]
        assert [m.text for m in MessageFilter().by_role(Role.ASSISTANT)(messages)] == ["b"]

    def test_limit(self):
        """Test that limit caps the result"""
        messages = to_messages([msg("human", str(i)) for i in range(5)])
        assert len(MessageFilter().limit(2)(messages)) == 2


# ── Strategies ────────────────────────────────────────────────────────────────

class TestStrategies:
    """Test each parsing strategy in isolation"""

    def test_direct_parses_array(self):
        """Test direct parse counts every element"""
        batch = parse_direct(json.dumps(CONVERSATION + [{"role": "bot"}]))
        assert len(batch.messages) == 4
        assert batch.candidates == 5

    def test_direct_rejects_non_array(self):
        """Test direct parse fails on an object or malformed JSON"""
        with pytest.raises(ValueError):
            parse_direct('{"role": "human", "content": "x"}')
        with pytest.raises(ValueError):
            parse_direct('[{"role": "human",')
        with pytest.raises(ValueError):
            parse_direct('[{"role": "human", "content": NaN}]')

    def test_direct_accepts_lone_surrogate_escape(self):
        """Test a cut surrogate pair decodes to U+FFFD while intact pairs survive"""
        text = r'[{"role":"human","content":"cut \ud83d"},{"role":"assistant","content":"ok \ud83d\ude00"}]'
        batch = parse_direct(text)
        assert [m.text for m in batch.messages] == ["cut \ufffd", "ok \U0001F600"]
        assert all(m.source_size > 0 for m in batch.messages)

    def test_chunks_accept_lone_surrogate_escape(self):
        """Test per-chunk decoding tolerates the same escape"""
        text = '[\n{"role":"human","content":"cut \\ud83d here"},\n{"role":"human",\n]'
        assert [m.text for m in parse_chunks(text).messages] == ["cut \ufffd here"]

    def test_direct_applies_filters(self):
        """Test filters run during the direct parse"""
        batch = parse_direct(json.dumps(CONVERSATION), FilterSpec(search="tests"))
        assert [m.role for m in batch.messages] == [Role.HUMAN, Role.ASSISTANT]

    def test_chunks_skips_corrupted_element(self):
        """Test chunk parsing keeps every element except the corrupted one"""
        lines = [json.dumps(m) for m in CONVERSATION]
        lines.insert(1, CORRUPTED_LINE)
        text = "[\n" + ",\n".join(lines) + "\n]"
        batch = parse_chunks(text)
        assert [m.text for m in batch.messages] == [m["content"] for m in CONVERSATION]
        assert batch.skipped == 1

    def test_chunks_records_source_size(self):
        """Test chunk messages carry the byte size of their source text"""
        text = "[\n" + ",\n".join(json.dumps(m) for m in CONVERSATION) + "\n]"
        batch = parse_chunks(text)
        assert all(m.source_size > 0 for m in batch.messages)

    def test_balanced_lines_without_array_syntax(self):
        """Test brace balancing recovers pretty-printed objects with no enclosing array"""
        text = (
            '{\n  "role": "human",\n  "content": "first"\n}\n'
            "garbage line\n"
            ',{\n  "role": "assistant",\n  "content": "second"\n}\n'
        )
        batch = parse_balanced_lines(text)
        assert [m.text for m in batch.messages] == ["first", "second"]

    def test_balanced_lines_resets_on_negative_depth(self):
        """Test a stray closing brace does not poison later objects"""
        text = '}\n{"role": "human", "content": "after"}\n'
        assert [m.text for m in parse_balanced_lines(text).messages] == ["after"]

    def test_object_literals_in_garbage(self):
        """Test regex extraction finds objects among junk and validates them"""
        text = '\x00\x01junk{"role":"human","content":"hello"} more {not json} {"role":"bot","content":"x"}'
        batch = parse_object_literals(text)
        assert [m.text for m in batch.messages] == ["hello"]

    def test_object_literals_one_level_nesting(self):
        """Test objects with a nested object are matched whole"""
        text = 'xx {"role":"assistant","content":{"kind":"note"}} yy'
        batch = parse_object_literals(text)
        assert batch.messages[0].text == '{"kind":"note"}'


class TestStrategyChain:
    """Test the ordered fallback"""

    def test_first_success_wins(self):
        """Test a valid array stops at the direct strategy with an exact total"""
        outcome = StrategyChain().run(json.dumps(CONVERSATION))
        assert outcome.strategy == "direct"
        assert outcome.exact_total == 4

    def test_falls_through_to_balanced_lines(self):
        """Test pretty-printed objects without array syntax use brace balancing"""
        text = '{\n  "role": "human",\n  "content": "first"\n}\ngarbage\n'
        outcome = StrategyChain().run(text)
        assert outcome.strategy == "balanced_lines"
        assert outcome.exact_total is None

    def test_falls_through_to_object_literals(self):
        """Test single-line garbage falls back to regex extraction"""
        text = 'junk {"role":"human","content":"hello"} {broken'
        outcome = StrategyChain().run(text)
        assert outcome.strategy == "object_literals"
        assert len(outcome.messages) == 1

    def test_nothing_recoverable(self):
        """Test the chain returns an empty outcome rather than raising"""
        outcome = StrategyChain().run("not json at all")
        assert outcome.strategy is None
        assert outcome.messages == []
        assert not outcome.succeeded

    def test_empty_array_is_not_success(self):
        """Test an empty result moves on to the next strategy"""
        outcome = StrategyChain().run("[]")
        assert outcome.messages == []

    def test_raising_strategy_does_not_abort(self):
        """Test any exception from a strategy becomes a failed outcome and the chain moves on"""

        def explode(text, filters=None):
            raise RuntimeError("disk on fire")

        chain = StrategyChain([Strategy("explode", explode), Strategy("chunks", parse_chunks)])
        failed = chain.attempt(chain.strategies[0], "[]")
        assert failed.error == "RuntimeError: disk on fire"
        text = "[\n" + ",\n".join(json.dumps(m) for m in CONVERSATION) + "\n]"
        outcome = chain.run(text)
        assert outcome.strategy == "chunks"
        assert len(outcome.messages) == 4


# ── Analysis ──────────────────────────────────────────────────────────────────

class TestAnalyzer:
    """Test keyword, entity and content analysis"""

    def test_extract_keywords_by_frequency(self):
        """Test keywords sort by count and drop stop words"""
        text = "The database migration failed. Database schema needs migration and database index"
        keywords = extract_keywords(text)
        assert keywords[:2] == ["database", "migration"]
        assert "the" not in keywords and "and" not in keywords

    def test_extract_keywords_drops_short_tokens(self):
        """Test tokens of three characters or fewer are ignored"""
        assert extract_keywords("api api api css") == []

    def test_extract_keywords_limit(self):
        """Test the result is capped"""
        text = " ".join(f"word{i}x" for i in range(30))
        assert len(extract_keywords(text, limit=20)) == 20

    def test_analyze_messages(self):
        """Test counts, markers, key actions and time range"""
        messages = to_messages([
            msg("human", "Create the parser please", 0),
            msg("assistant", "I've created the parser module. It works.\n<write_to_file>parser.py</write_to_file>", 500),
            msg("assistant", "<execute_command>pytest</execute_command>\n```bash\npytest\n```", 1000),
            msg("system", "note"),
        ])
        analysis = analyze_messages(messages)
        assert analysis.message_count == 4
        assert analysis.human_messages == 1
        assert analysis.assistant_messages == 2
        assert analysis.file_operations == 1
        assert analysis.commands_executed == 1
        assert analysis.code_blocks == 1
        assert analysis.files_referenced == ["parser.py"]
        assert analysis.key_actions == ["I've created the parser module"]
        assert analysis.time_range == {"start": "1970-01-01T00:00:00.000Z", "end": "1970-01-01T00:00:01.000Z"}

    def test_key_actions_only_from_assistant(self):
        """Test human messages never produce key actions"""
        analysis = analyze_messages(to_messages([msg("human", "I fixed it myself")]))
        assert analysis.key_actions == []

    def test_analyze_empty(self):
        """Test empty input gives zero counts and no time range"""
        analysis = analyze_messages([])
        assert analysis.message_count == 0
        assert analysis.topics == []
        assert analysis.time_range is None

    def test_extract_entities(self):
        """Test files, URLs and emails are found and de-duplicated in order"""
        messages = to_messages([
            msg("human", "See src/app.py and https://example.com/docs or mail dev@example.com"),
            msg("assistant", "Updated src/app.py and config/settings.json"),
        ])
        entities = extract_entities(messages)
        assert entities.files == ["src/app.py", "config/settings.json"]
        assert entities.urls == ["https://example.com/docs"]
        assert entities.emails == ["dev@example.com"]

    def test_file_regex_prefers_longer_extensions(self):
        """Test .json and .tsx are not truncated to .js / .ts"""
        entities = extract_entities(to_messages([msg("human", "edit package.json and App.tsx")]))
        assert entities.files == ["package.json", "App.tsx"]


class TestRanking:
    """Test topic and file ranking"""

    def test_recency_breaks_frequency(self):
        """Test a later topic can outrank an earlier one of equal frequency"""
        messages = to_messages([
            msg("human", "redux redux redux"),
            msg("assistant", "something else"),
            msg("human", "router router router"),
        ])
        ranking = rank_topics(["redux", "router"], messages)
        assert ranking.main_topic == "router"
        assert ranking.subtopics == ["redux"]

    def test_whole_word_matching(self):
        """Test partial words do not count as occurrences"""
        messages = to_messages([msg("human", "test testing tests"), msg("human", "parse parse")])
        assert rank_topics(["test", "parse"], messages).main_topic == "parse"

    def test_no_topics(self):
        """Test empty topic list gives an unknown main topic"""
        ranking = rank_topics([], to_messages([msg("human", "x")]))
        assert ranking.main_topic == "unknown"
        assert ranking.subtopics == []

    def test_rank_files_counts_messages_not_occurrences(self):
        """Test a recently mentioned file beats one repeated in an old message"""
        messages = to_messages([msg("human", "a.py a.py a.py"), msg("assistant", "b.py")])
        assert rank_files(["a.py", "b.py"], messages) == ["b.py", "a.py"]

    def test_rank_files_capped(self):
        """Test at most ten active files are returned"""
        files = [f"f{i}.py" for i in range(12)]
        messages = to_messages([msg("human", " ".join(files))])
        assert len(rank_files(files, messages)) == 10
        assert rank_files([], messages) == []


class TestCodeEvolution:
    """Test grouping of code snippets into evolutions"""

    def _snippet(self, context: str, code: str = "x = 1", index: int = 0) -> CodeSnippet:
        return CodeSnippet(language="js", code=code, context=context, message_index=index)

    def test_grouping_key_priority(self):
        """Test path beats function beats class beats hash"""
        assert grouping_key(self._snippet("function handleClick in src/app.js")) == "src/app.js"
        assert grouping_key(self._snippet("Here is function handleClick")) == "function:handleClick"
        assert grouping_key(self._snippet("Updated def parse_args")) == "function:parse_args"
        assert grouping_key(self._snippet("The class Parser now")) == "class:Parser"
        key = grouping_key(self._snippet("Try this"))
        assert re.fullmatch(r"snippet:[0-9a-f]{8}", key)
        assert key == grouping_key(self._snippet("Different context"))

    def test_groups_by_file_path(self):
        """Test three versions of utils/foo.js form one growing group"""
        raw = [msg("human", "Please write utils/foo.js")]
        for lines in (1, 2, 3):
            body = "\n".join(f"const v{i} = {i};" for i in range(lines))
            raw.append(msg("assistant", f"Here is the update to utils/foo.js:\n```js\n{body}\n```"))
        evolutions = extract_code_evolution(to_messages(raw))
        assert len(evolutions) == 1
        group = evolutions[0]
        assert group.file == "utils/foo.js"
        assert group.iterations == 3
        assert group.language == "js"
        assert "grew by 2 lines" in group.description
        assert (group.first_index, group.last_index) == (1, 3)

    def test_describe_reduction_and_additions(self):
        """Test shrink and added-definition phrasing"""
        shrink = describe_evolution([self._snippet("", "a\nb\nc"), self._snippet("", "a", 1)])
        assert "refactored and reduced by 2 lines" in shrink
        grow = describe_evolution([
            self._snippet("", "def a(): pass"),
            self._snippet("", "def a(): pass\ndef b(): pass\nclass C: pass", 1),
        ])
        assert "1 new function was added." in grow
        assert "1 new class was added." in grow

    def test_trivial_single_snippet_dropped(self):
        """Test a short one-off snippet without a path is not an evolution"""
        messages = to_messages([msg("assistant", "Try:\n```python\nx = 1\n```")])
        assert extract_code_evolution(messages) == []

    def test_single_snippet_with_path_kept(self):
        """Test a one-off snippet keyed by a path keeps its context as description"""
        messages = to_messages([msg("assistant", "In lib/db.py:\n```python\nx = 1\n```")])
        evolutions = extract_code_evolution(messages)
        assert evolutions[0].file == "lib/db.py"
        assert evolutions[0].description == "In lib/db.py:"


# ── Synthesis ─────────────────────────────────────────────────────────────────

class TestOpenQuestions:
    """Test unanswered question detection"""

    def test_unanswered_question_reported(self):
        """Test a question with no matching answer appears without its question mark"""
        messages = to_messages([
            msg("human", "Should I use Redux or Context API?"),
            msg("assistant", "Let me look at the build configuration first."),
        ])
        assert extract_open_questions(messages) == ["Should I use Redux or Context API"]

    def test_answered_question_excluded(self):
        """Test a later answer sharing most significant words closes the question"""
        messages = to_messages([
            msg("human", "Should I use Redux or Context API?"),
            msg("assistant", "Redux and the Context API are both fine choices here."),
        ])
        assert extract_open_questions(messages) == []

    def test_only_later_assistant_messages_count(self):
        """Test an answer before the question does not close it"""
        messages = to_messages([
            msg("assistant", "Redux and the Context API are both fine choices here."),
            msg("human", "Should I use Redux or Context API?"),
        ])
        assert extract_open_questions(messages) == ["Should I use Redux or Context API"]

    def test_dotted_tokens_stay_in_question(self):
        """Test file paths and version numbers do not end a sentence"""
        messages = to_messages([msg("human", "What does utils/foo.js export? Also v1.2 vs 2.0?")])
        assert extract_open_questions(messages) == ["What does utils/foo.js export", "Also v1.2 vs 2.0"]

    def test_question_after_statement(self):
        """Test only the question sentence of a mixed message is reported"""
        messages = to_messages([msg("human", "I bumped setup.py to 3.1. Is the wheel still building?\nThanks!")])
        assert extract_open_questions(messages) == ["Is the wheel still building"]

    def test_deduplicated_and_capped(self):
        """Test repeated questions collapse and at most five are kept"""
        raw = [msg("human", "Why is build seven failing?")] * 2
        raw += [msg("human", f"Where does module{i} live?") for i in range(8)]
        questions = extract_open_questions(to_messages(raw))
        assert len(questions) == 5
        assert questions[0] == "Why is build seven failing"

    def test_overlap_ratio_configurable(self):
        """Test a stricter ratio keeps a partially answered question open"""
        messages = to_messages([
            msg("human", "Should I use Redux or Context API?"),
            msg("assistant", "Redux and the Context API are both fine choices here."),
        ])
        strict = RecoverySettings(answered_overlap_ratio=0.9)
        assert extract_open_questions(messages, strict) == ["Should I use Redux or Context API"]


class TestDecisionPoints:
    """Test decision point extraction"""

    def test_explicit_decision(self):
        """Test human decision language is quoted"""
        messages = to_messages([msg("human", "After thinking, we decided to use PostgreSQL for storage. Thanks")])
        assert identify_decision_points(messages) == ["Decision: we decided to use PostgreSQL for storage"]

    def test_recommendation_and_options(self):
        """Test assistant recommendations and option lists"""
        messages = to_messages([
            msg("assistant", "I recommend using SQLAlchemy here. It is solid."),
            msg("assistant", "There are two options. Option 1: files. Option 2: a database"),
        ])
        assert identify_decision_points(messages) == [
            "Recommendation: I recommend using SQLAlchemy here",
            "Assistant presented multiple options or approaches.",
        ]

    def test_guided_question(self):
        """Test an option-seeking question answered by the assistant"""
        messages = to_messages([
            msg("human", "Which approach should I take for caching? Speed matters"),
            msg("assistant", "Use Redis."),
        ])
        assert identify_decision_points(messages) == [
            'Question: "Which approach should I take for caching?..." - Decision made based on assistant\'s guidance.'
        ]

    def test_guided_question_needs_reply(self):
        """Test an unanswered option-seeking question is not a decision"""
        messages = to_messages([msg("human", "Which approach should I take?")])
        assert identify_decision_points(messages) == []

    def test_deduplicated_and_capped(self):
        """Test duplicates collapse and the list is capped"""
        raw = [msg("human", "I prefer tabs. Really")] * 3
        raw += [msg("human", f"we decided to ship v{i}. ok") for i in range(15)]
        points = identify_decision_points(to_messages(raw))
        assert points[0] == "Decision: I prefer tabs"
        assert len(points) == 10


class TestNarratives:
    """Test timeline, status, latest state, recent messages and summary"""

    def test_timeline_segments(self):
        """Test messages split into about five ranges"""
        messages = to_messages([msg("human", f"discussing databases item{i}") for i in range(7)])
        lines = generate_timeline(messages).split("\n")
        assert len(lines) == 4
        assert lines[0].startswith("Messages 1-2: Discussed")
        assert lines[-1].startswith("Messages 7-7:")

    def test_timeline_code_blocks(self):
        """Test code blocks are counted per segment"""
        messages = to_messages([msg("assistant", "```py\na\n```\n```py\nb\n```")])
        assert generate_timeline(messages).endswith("Shared 2 code blocks.")

    def test_timeline_empty(self):
        """Test empty input gives the fallback line"""
        assert generate_timeline([]) == "No messages recovered."

    def test_status_answering_question(self):
        """Test a pending human question plus an announced next step"""
        messages = to_messages([
            msg("human", "How do I configure the router?"),
            msg("assistant", "You add routes in config. Next, we should add tests for each route."),
        ])
        assert determine_current_status(messages) == (
            "At the time of the crash, I was answering your question about do I configure the router. "
            "The next step was likely to add tests for each route."
        )

    def test_status_writing_code(self):
        """Test an assistant code block classifies as implementing"""
        messages = to_messages([
            msg("human", "Please build the parser"),
            msg("assistant", "Here is the parser module:\n```python\ndef parse():\n    pass\n```"),
        ])
        status = determine_current_status(messages)
        assert "I was implementing code for you. Specifically, I was working on Here is the parser module:" in status
        assert status.endswith("to continue with the implementation or discussion.")

    def test_status_fallbacks(self):
        """Test one-sided and empty conversations"""
        assert determine_current_status([]) == "No conversation data available."
        only_assistant = determine_current_status(to_messages([msg("assistant", "Done.")]))
        assert "waiting for your response" in only_assistant
        only_human = determine_current_status(to_messages([msg("human", "Hello")]))
        assert "I was about to respond" in only_human

    def test_question_topic(self):
        """Test question words are stripped and long topics shortened"""
        assert extract_question_topic("What is a monad?") == "is a monad"
        assert extract_question_topic("x" * 60 + "?") == "x" * 50 + "..."

    def test_latest_state(self):
        """Test transcript fragment layout and truncation"""
        messages = to_messages([msg("human", "y" * 600), msg("assistant", "ok")])
        state = extract_latest_state(messages)
        assert state.startswith("Last 2 messages summary:\n\nUser: " + "y" * 500 + "...")
        assert "\n\nAssistant: ok\n\n" in state
        assert state.endswith(CRASH_STATE_NOTE)
        assert extract_latest_state([]) == NO_MESSAGES_STATE

    def test_recent_messages_absolute_index(self):
        """Test recent messages keep their index in the full conversation"""
        messages = to_messages([msg("human", str(i), i) for i in range(20)])
        recent = extract_recent_messages(messages, 15)
        assert len(recent) == 15
        assert (recent[0].index, recent[0].content, recent[0].timestamp) == (5, "5", 5)

    def test_summary_truncation(self):
        """Test summary respects max_length and ends with an ellipsis"""
        summary = generate_summary(to_messages(CONVERSATION), max_length=50)
        assert len(summary) <= 50
        assert summary.endswith("...")

    def test_summary_content(self):
        """Test summary mentions counts and key actions"""
        summary = generate_summary(to_messages(CONVERSATION))
        assert summary.startswith("This conversation had 4 messages (2 from human, 2 from assistant).")
        assert "Key actions: I've fixed the token check in src/auth" in summary
        assert not summary.endswith(" ")

    def test_truncate_edges(self):
        """Test tiny limits and negative lengths"""
        assert truncate("abcdef", 2) == ".."
        assert truncate("abc", 3) == "abc"
        with pytest.raises(ValueError):
            generate_summary([], max_length=-1)


# ── Recovery pipeline ─────────────────────────────────────────────────────────

class TestRecovery:
    """Test the full recovery pipeline"""

    def test_round_trip(self, transcript):
        """Test a valid file is fully recovered with confidence 1"""
        result = recover_crashed_conversation(transcript)
        assert result.message_count.recovered == 4
        assert result.message_count.total == 4
        assert result.message_count.human == 2
        assert result.message_count.assistant == 2
        assert result.recovery_confidence == 1.0
        assert result.recovery_strategy == "direct"
        assert result.original_task == "Please help me fix the login bug in src/auth.py"
        assert result.active_files[0] == "src/auth.py"

    def test_degraded_recovery(self, degraded_transcript):
        """Test one corrupted element costs one message and lowers confidence"""
        result = recover_crashed_conversation(degraded_transcript)
        assert result.message_count.recovered == 4
        assert result.recovery_strategy in ("chunks", "balanced_lines")
        assert 0 < result.recovery_confidence < 1
        assert result.message_count.total > result.message_count.recovered

    def test_idempotent(self, degraded_transcript):
        """Test two runs give byte-identical JSON"""
        first = json.dumps(recover_crashed_conversation(degraded_transcript).to_dict())
        second = json.dumps(recover_crashed_conversation(degraded_transcript).to_dict())
        assert first == second

    def test_empty_file(self, tmp_path):
        """Test an empty file yields zero confidence and fallback text"""
        path = tmp_path / "empty.json"
        path.write_text("", encoding="utf-8")
        result = recover_crashed_conversation(path)
        assert result.message_count.recovered == 0
        assert result.message_count.total == 0
        assert result.recovery_confidence == 0.0
        assert result.recovery_strategy is None
        assert result.original_task == ""
        assert result.main_topic == "unknown"
        assert result.timeline == "No messages recovered."
        assert result.current_status == "No conversation data available."
        assert result.latest_state == NO_MESSAGES_STATE
        assert "primarily about unknown" in format_recovered_context(result)

    def test_binary_garbage(self, tmp_path):
        """Test messages survive undecodable bytes around them"""
        path = tmp_path / "binary.json"
        path.write_bytes(b'\xff\xfe\x00[{"role":"human","content":"still here"}\x00\x9c garbage')
        result = recover_crashed_conversation(path)
        assert result.message_count.recovered == 1
        assert result.original_task == "still here"

    def test_lone_surrogate_escape_round_trip(self, tmp_path):
        """Test a valid file with a cut surrogate pair is recovered in full"""
        path = tmp_path / "cut.json"
        path.write_text(
            r'[{"role":"human","content":"cut emoji \ud83d"},{"role":"assistant","content":"ok"}]',
            encoding="utf-8",
        )
        result = recover_crashed_conversation(path)
        assert result.recovery_strategy == "direct"
        assert result.message_count.recovered == 2
        assert result.message_count.total == 2
        assert result.recovery_confidence == 1.0
        assert result.original_task == "cut emoji \ufffd"
        JsonFormatter().format(result).encode("utf-8")
        format_recovered_context(result).encode("utf-8")

    def test_missing_file_raises(self, tmp_path):
        """Test an unreadable file is the one hard failure"""
        with pytest.raises(OSError):
            recover_crashed_conversation(tmp_path / "missing.json")

    def test_negative_max_length(self, transcript):
        """Test invalid max_length is rejected"""
        with pytest.raises(ValueError):
            recover_crashed_conversation(transcript, max_length=-5)

    def test_code_snippets_optional(self, transcript):
        """Test code extraction can be switched off"""
        assert recover_crashed_conversation(transcript).code_snippets
        result = recover_crashed_conversation(transcript, include_code_snippets=False)
        assert result.code_snippets == []
        assert result.code_evolution == []

    def test_settings_flow_through_context(self, tmp_path):
        """Test settings from the context change the pipeline"""
        raw = [msg("human", f"Where does module{i} live?") for i in range(4)]
        path = write_transcript(tmp_path / "q.json", raw)
        context = RecoveryContext(settings=RecoverySettings(max_open_questions=1))
        assert len(ChatRecoveryEngine(context).recover(path).open_questions) == 1

    def test_attempt_recovery_with_filters(self, transcript):
        """Test filters narrow the recovered messages"""
        engine = ChatRecoveryEngine()
        found = engine.attempt_recovery(transcript, FilterSpec(since=2500))
        assert [m.timestamp for m in found] == [3000, 4000]

    def test_analyze_file(self, transcript):
        """Test content analysis of a file with a time filter"""
        analysis = ChatRecoveryEngine().analyze_file(transcript, since=2000)
        assert analysis.message_count == 3
        assert analysis.code_blocks == 1


class TestFormatters:
    """Test narrative and other output formats"""

    def test_narrative_sections(self, transcript):
        """Test the narrative renders every fixed section in order"""
        text = format_recovered_context(recover_crashed_conversation(transcript))
        headers = [
            "📋 CONVERSATION RECOVERY",
            "📊 DISCUSSION TOPICS",
            "🎯 PROJECT CONTEXT",
            "💬 RECENT CONVERSATION",
            "📍 CURRENT STATUS",
            "💻 ACTIVE CODE & FILES",
            "🧠 MEMORY BANK REFERENCE",
            "🔄 CONTINUATION",
        ]
        positions = [text.index(h) for h in headers]
        assert positions == sorted(positions)
        assert "/memory-bank/progress.md" in text
        assert "You were working on Please help me fix the login bug" in text

    def test_narrative_uses_latest_evolution(self):
        """Test the code section shows the most recently touched group"""
        result = RecoveryResult(code_evolution=[
            CodeEvolution("a.js", "js", "old", "", 2, 0, 2),
            CodeEvolution("b.js", "js", "new", "", 1, 5, 5),
        ])
        text = format_recovered_context(result)
        assert "```js\nnew\n```" in text
        assert "```js\nold\n```" not in text

    def test_narrative_truncates_recent_messages(self):
        """Test long recent messages are cut at 300 characters"""
        result = RecoveryResult(recent_messages=[RecentMessage("assistant", "z" * 400, 0)])
        assert "Claude: " + "z" * 300 + "...\n" in format_recovered_context(result)

    def test_json_formatter(self, transcript):
        """Test JSON output carries the result keys"""
        data = json.loads(JsonFormatter().format(recover_crashed_conversation(transcript)))
        assert data["message_count"]["recovered"] == 4
        assert data["recovery_confidence"] == 1.0
        assert "code_evolution" in data

    def test_table_formatter(self, transcript):
        """Test table output for results and messages"""
        result = recover_crashed_conversation(transcript)
        assert "Confidence" in TableFormatter("Recovery").format(result)
        assert "human" in TableFormatter("Messages").format_many(to_messages(CONVERSATION))

    def test_get_formatter(self):
        """Test the formatter factory"""
        assert isinstance(get_formatter("json"), JsonFormatter)
        with pytest.raises(ValueError):
            get_formatter("xml")


class TestCrashReport:
    """Test crash report construction"""

    def test_fields(self):
        """Test report fields and caps"""
        result = RecoveryResult(
            summary="s", main_topic="auth", subtopics=[f"t{i}" for i in range(8)],
            active_files=[f"f{i}.py" for i in range(8)], open_questions=["q"], current_status="status",
        )
        report = create_crash_report("task-1", result, "narrative", report_id="r1", timestamp=123)
        data = report.to_dict()
        assert data["id"] == "r1"
        assert data["task_id"] == "task-1"
        assert data["timestamp"] == 123
        assert len(data["subtopics"]) == 5
        assert len(data["active_files"]) == 5
        assert data["formatted_message"] == "narrative"
        assert data["read"] is False

    def test_generated_id_and_default_message(self):
        """Test id format and narrative default"""
        report = create_crash_report("task-2", RecoveryResult())
        assert re.fullmatch(r"crash-\d+-[0-9a-f]{9}", report.id)
        assert report.formatted_message.startswith("📋 CONVERSATION RECOVERY")


class TestSettings:
    """Test configurable heuristics"""

    def test_from_dict(self):
        """Test known keys are coerced and unknown keys ignored"""
        settings = RecoverySettings.from_dict({"topic_recency_weight": 1, "log_level": "INFO"})
        assert settings.topic_recency_weight == 1.0
        assert isinstance(settings.topic_recency_weight, float)
        assert settings.file_recency_weight == 2.0

    def test_from_dict_rejects_bad_values(self):
        """Test non-numeric and negative values raise"""
        with pytest.raises(ValueError):
            RecoverySettings.from_dict({"max_active_files": "ten"})
        with pytest.raises(ValueError):
            RecoverySettings.from_dict({"answered_overlap_ratio": -1})
        with pytest.raises(ValueError):
            RecoverySettings.from_dict({"topic_recency_weight": float("nan")})

    def test_integer_settings_reject_fractions(self):
        """Test whole-number settings refuse fractional values but accept 2.0"""
        with pytest.raises(ValueError):
            RecoverySettings.from_dict({"max_open_questions": 2.7})
        settings = RecoverySettings.from_dict({"max_open_questions": 2.0, "answered_overlap_ratio": 0.75})
        assert settings.max_open_questions == 2
        assert isinstance(settings.max_open_questions, int)
        assert settings.answered_overlap_ratio == 0.75

    def test_defaults(self):
        """Test documented defaults"""
        settings = RecoverySettings()
        assert (settings.topic_recency_weight, settings.file_recency_weight) == (0.5, 2.0)
        assert settings.answered_overlap_ratio == 0.5
        assert settings.recent_message_count == 15
        assert settings.latest_state_count == 10


class TestProtocols:
    """Test structural protocol conformance"""

    def test_engine_is_recoverable(self):
        assert isinstance(ChatRecoveryEngine(), Recoverable)

    def test_strategies_and_formatters(self):
        assert isinstance(parse_chunks, ParseFunction)
        assert isinstance(JsonFormatter(), Formatter)
        assert isinstance(TableFormatter(), Formatter)


class TestLogging:
    """Test logging configuration"""

    def test_configure_logging_levels(self, tmp_path):
        """Test explicit level, file sink and rejection of unknown levels"""
        log_file = tmp_path / "logs" / "recovery.log"
        try:
            assert configure_logging("info", log_file) == "INFO"
            ChatRecoveryEngine().attempt_recovery(write_transcript(tmp_path / "c.json", CONVERSATION))
            with pytest.raises(ValueError):
                configure_logging("LOUD")
        finally:
            logger.remove()
        assert "direct strategy" in log_file.read_text(encoding="utf-8")

    def test_silent_until_configured(self, tmp_path):
        """Test importing the package mutes its logs until configure_logging runs"""
        path = write_transcript(tmp_path / "c.json", CONVERSATION)
        seen = []
        importlib.reload(chat_recovery_tools)
        logger.add(seen.append, level="DEBUG")
        try:
            ChatRecoveryEngine().attempt_recovery(path)
            assert seen == []
            configure_logging("DEBUG")
            logger.add(seen.append, level="DEBUG")
            ChatRecoveryEngine().attempt_recovery(path)
            assert any("direct strategy" in line for line in seen)
        finally:
            logger.remove()


# ── CLI ───────────────────────────────────────────────────────────────────────

@pytest.fixture
def cli_env(tmp_path):
    """Isolated config path; resets CLI globals and log sinks around each test"""
    cli._config_cache = None
    cli._g_config_path = None
    yield {"CHAT_RECOVERY_CONFIG": str(tmp_path / "config" / "config.json")}
    logger.remove()
    cli._config_cache = None
    cli._g_config_path = None


class TestCLI:
    """Test the command line interface"""

    def test_recover_json(self, transcript, cli_env):
        """Test recover emits the result as JSON"""
        result = runner.invoke(app, ["recover", str(transcript), "--format", "json"], env=cli_env)
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["message_count"]["recovered"] == 4
        assert data["recovery_strategy"] == "direct"

    def test_recover_narrative(self, transcript, cli_env):
        """Test the default output is the narrative"""
        result = runner.invoke(app, ["recover", str(transcript)], env=cli_env)
        assert result.exit_code == 0
        assert "📋 CONVERSATION RECOVERY" in result.stdout

    def test_recover_crash_report(self, transcript, cli_env):
        """Test crash report output"""
        result = runner.invoke(app, ["recover", str(transcript), "--crash-report", "task-9"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["task_id"] == "task-9"
        assert data["read"] is False

    def test_recover_to_file(self, transcript, tmp_path, cli_env):
        """Test --output writes the report to disk"""
        out = tmp_path / "out" / "result.json"
        result = runner.invoke(app, ["recover", str(transcript), "-f", "json", "-o", str(out)], env=cli_env)
        assert result.exit_code == 0
        assert json.loads(out.read_text(encoding="utf-8"))["message_count"]["total"] == 4

    def test_recover_missing_file(self, tmp_path, cli_env):
        """Test an unreadable file exits with an error"""
        result = runner.invoke(app, ["recover", str(tmp_path / "nope.json")], env=cli_env)
        assert result.exit_code == 1

    def test_recover_bad_format(self, transcript, cli_env):
        """Test an unknown format exits with an error"""
        result = runner.invoke(app, ["recover", str(transcript), "--format", "xml"], env=cli_env)
        assert result.exit_code == 1

    def test_messages_role_filter(self, transcript, cli_env):
        """Test messages lists only the requested role"""
        result = runner.invoke(app, ["messages", str(transcript), "--role", "human", "-f", "json"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [m["role"] for m in data] == ["human", "human"]

    def test_messages_plain(self, transcript, cli_env):
        """Test plain message listing"""
        result = runner.invoke(app, ["messages", str(transcript), "--limit", "1"], env=cli_env)
        assert result.exit_code == 0
        assert result.stdout.startswith("[human] Please help me fix the login bug")

    def test_analyze_json(self, transcript, cli_env):
        """Test analyze emits content statistics"""
        result = runner.invoke(app, ["analyze", str(transcript), "--format", "json"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["message_count"] == 4
        assert data["code_blocks"] == 1

    def test_config_init_and_show(self, cli_env):
        """Test config init writes defaults that show reads back"""
        result = runner.invoke(app, ["config", "init"], env=cli_env)
        assert result.exit_code == 0
        result = runner.invoke(app, ["config", "show", "--format", "json"], env=cli_env)
        data = json.loads(result.stdout)
        assert data["exists"] is True
        assert data["config"]["file_recency_weight"] == 2.0
        assert runner.invoke(app, ["config", "init"], env=cli_env).exit_code == 1

    def test_config_show_effective_settings(self, cli_env):
        """Test show lists every setting with its value, marking ignored keys"""
        config_file = Path(cli_env["CHAT_RECOVERY_CONFIG"])
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"max_open_questions": 2, "colour": "blue"}), encoding="utf-8")
        result = runner.invoke(app, ["config", "show", "-f", "json"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["effective"]["max_open_questions"] == 2
        assert data["effective"]["file_recency_weight"] == 2.0
        assert data["ignored"] == ["colour"]
        table = runner.invoke(app, ["config", "show"], env=cli_env)
        assert table.exit_code == 0
        assert "max_open_questions" in table.stdout and "ignored" in table.stdout

    def test_config_show_invalid(self, cli_env):
        """Test show reports a bad setting value"""
        config_file = Path(cli_env["CHAT_RECOVERY_CONFIG"])
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"max_open_questions": 2.5}), encoding="utf-8")
        assert runner.invoke(app, ["config", "show"], env=cli_env).exit_code == 1

    def test_config_path(self, cli_env):
        """Test path prints the resolved config location"""
        result = runner.invoke(app, ["config", "path"], env=cli_env)
        assert result.exit_code == 0
        assert result.stdout.splitlines()[0] == cli_env["CHAT_RECOVERY_CONFIG"]

    def test_config_applies_settings(self, tmp_path, cli_env):
        """Test config values reach the engine"""
        config_file = Path(cli_env["CHAT_RECOVERY_CONFIG"])
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"max_open_questions": 1}), encoding="utf-8")
        raw = [msg("human", f"Where does module{i} live?") for i in range(4)]
        path = write_transcript(tmp_path / "q.json", raw)
        result = runner.invoke(app, ["recover", str(path), "-f", "json"], env=cli_env)
        assert result.exit_code == 0
        assert len(json.loads(result.stdout)["open_questions"]) == 1

    def test_invalid_config_value(self, transcript, cli_env):
        """Test a bad setting value exits with an error"""
        config_file = Path(cli_env["CHAT_RECOVERY_CONFIG"])
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"max_active_files": "many"}), encoding="utf-8")
        result = runner.invoke(app, ["recover", str(transcript)], env=cli_env)
        assert result.exit_code == 1
