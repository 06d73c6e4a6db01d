"""
Prompt templates for the planning phase and work sessions.

Plain string templates; the only logic is choosing merge instructions and
trimming an existing CLAUDE.md to a fixed budget.
"""

from __future__ import annotations

from typing import Optional

from claude_task_master import STATE_DIR

# Characters of an existing CLAUDE.md embedded in the planning prompt
CLAUDE_MD_BUDGET = 2000

_CLAUDE_MD_SECTION = """## Existing Project Context (CLAUDE.md)
The project already has a CLAUDE.md file. Read it and follow its conventions:

```
{content}
```
"""

_PLANNING_PROMPT = """# Claude Task Master - Planning Phase

You are an autonomous software engineer starting a new project. Your job is to:
1. **Analyze the codebase** - understand what exists, its patterns and tech stack
2. **Create a detailed plan** - break the goal into PRs, and each PR into tasks
3. **Save the plan** - write it to {state_dir}/plan.md

{claude_md_section}
## Goal
{goal}

## Planning Instructions

### Step 1: Explore the Codebase
- Read key files: README, CLAUDE.md, build and dependency manifests
- Understand the project structure and directory layout
- Identify existing patterns, coding style and conventions
- Note the tech stack, dependencies and build system
- Check for existing CI configuration (.github/workflows, etc.)

### Step 2: Design the Plan
Structure the plan as a sequence of PRs. Each PR should be:
- **Atomic**: a logical chunk of work that stands on its own
- **Reviewable**: small enough for meaningful code review
- **Testable**: includes tests or can be verified independently

Use this layout:
```markdown
# Plan for: [Goal Summary]

## PR 1: [Title]
- [ ] Task 1.1: Description
- [ ] Task 1.2: Description

## PR 2: [Title]
- [ ] Task 2.1: Description
```

Guidelines:
- Typically 3-10 PRs depending on scope, 3-15 tasks per PR
- The first PR usually covers project setup, CI and basic structure
- Order tasks by dependency
- Include test and documentation tasks where appropriate

### Step 3: Write State Files
1. Write the plan to `{state_dir}/plan.md`
2. Update `{state_dir}/state.json`:
   - Set `status` to `"ready"`
   - Set `current_task` to the first task description
   - Set `current_pr` to `1`
3. Write context to `{state_dir}/context.md`:
   - Key files discovered
   - Patterns to follow
   - Decisions made

{merge_note}
Be thorough but practical. Each PR should deliver value.
"""

_AUTO_MERGE = """**Auto-merge is enabled**
- Once a PR is approved (CI green, no unresolved comments), merge it:
  `gh pr merge --squash --delete-branch`
- After merging, pull main and start the next PR
"""

_NO_MERGE = """**IMPORTANT: DO NOT MERGE PRs**
- Create PRs but do not merge them; a human reviews and merges
- Once a PR is ready (CI green, no unresolved comments), move on to the next PR
- Set `pr_ready` to `true` in state.json when a PR is ready to merge
"""

_WORK_PROMPT = """# Claude Task Master - Work Session

You are an autonomous software engineer continuing work on a project.

## Current State
{context}

## Work Loop Instructions

### Step 1: Understand Current State
- Read `{state_dir}/plan.md` to see all tasks
- Read `{state_dir}/state.json` for the current task and status
- Decide what needs to be done next

### Step 2: Execute the Work

**If working on a task:**
1. Implement the task
2. Run tests and linters if available
3. Commit with a clear message
4. Check the task off in plan.md: `- [x] Task`
5. Update state.json with the next task
6. Continue with the next task of the same PR

**If all tasks of the current PR are done:**
1. Create the PR if it does not exist yet:
   `gh pr create --title "PR Title" --body "Description"`
2. Store the PR number in state.json as `pr_number`

**If a PR exists, check its status:**
1. CI: `gh pr checks`
2. Review comments (CodeRabbit, Copilot, human reviewers):
   `gh pr view --json comments,reviews`
   `gh api repos/{{owner}}/{{repo}}/pulls/{{pr}}/comments`
3. **Address ALL review comments before moving on**: make the requested
   changes, push, and wait for CI to pass again

**If CI fails:** read the failure with `gh pr checks`, fix it, push, repeat
until green.

{merge_instructions}
### Step 3: Track Progress

Keep the state files current after every significant step:

- plan.md: check off finished tasks, leave pending ones unchecked
- state.json:
  ```json
  {{
    "status": "working|ready|blocked|success",
    "current_task": "Current task description",
    "current_pr": 1,
    "pr_number": 123,
    "pr_ready": false
  }}
  ```
- progress.md: append what was done, issues hit and decisions made
- context.md: add newly discovered patterns and learnings

### Step 4: Handle Completion

**When the current PR is merged or ready:**
1. Increment `current_pr` in state.json
2. Branch from main: `git checkout main && git pull && git checkout -b pr-N-description`
3. Reset `pr_number` to null
4. Continue with the next PR's tasks

**When ALL PRs are done:** set `status` to `"success"` and write a
completion summary to progress.md.

**If stuck or blocked:** set `status` to `"blocked"`, put the reason in
`notes`, explain the blocker in progress.md, and do not retry the same
failing approach.

### Guidelines
- Work autonomously and make decisions
- Ship working code without over-engineering
- Follow existing patterns in the codebase
- Keep commits focused and well described
- Fix issues properly instead of hacking around them
"""


def merge_instructions(no_merge: bool = False) -> str:
    """Merge policy block shared by both prompts."""
    return _NO_MERGE if no_merge else _AUTO_MERGE


def planning_prompt(
    goal: str,
    existing_claude_md: Optional[str] = None,
    no_merge: bool = False,
) -> str:
    """
    Build the planning-phase prompt.

    Args:
        goal: The user's goal.
        existing_claude_md: Contents of the project's CLAUDE.md, if any.
            Only the first CLAUDE_MD_BUDGET characters are included.
        no_merge: Tell the Agent that PRs will be merged by a human.

    Returns:
        The prompt text.
    """
    claude_md_section = ""
    if existing_claude_md:
        content = existing_claude_md[:CLAUDE_MD_BUDGET]
        if len(existing_claude_md) > CLAUDE_MD_BUDGET:
            content += "..."
        claude_md_section = _CLAUDE_MD_SECTION.format(content=content)

    return _PLANNING_PROMPT.format(
        state_dir=STATE_DIR,
        claude_md_section=claude_md_section,
        goal=goal,
        merge_note=merge_instructions(no_merge),
    )


def work_prompt(context: str, no_merge: bool = False) -> str:
    """
    Build the prompt for one work session.

    Args:
        context: Document from StateStore.build_context().
        no_merge: Tell the Agent not to merge PRs.

    Returns:
        The prompt text.
    """
    return _WORK_PROMPT.format(
        state_dir=STATE_DIR,
        context=context,
        merge_instructions=merge_instructions(no_merge),
    )
