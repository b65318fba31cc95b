"""
Command-line interface for the Second Brain assistant.

Provides commands for asking questions, inspecting retrieved evidence,
initializing storage, and checking system status and configuration.
"""

import asyncio
from datetime import datetime, time
from typing import Optional

import click

from .assistant import create_assistant
from .config import ConfigManager, configure_logging
from .errors import PipelineError
from .llm.ollama_client import OllamaClient
from .models import RetrievalFilters, RetrievalRequest, SourceType
from .retrieval.pipeline import create_pipeline
from .retrieval.vectordb.qdrant_vector_store import QdrantVectorStore
from .storage.metadata_store import SQLiteMetadataStore


def _build_filters(
    documents: tuple,
    tags: tuple,
    source_types: tuple,
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    title: Optional[str],
    count: Optional[int]
) -> RetrievalFilters:
    if date_to is not None:
        date_to = datetime.combine(date_to.date(), time.max)
    return RetrievalFilters(
        document_ids=list(documents),
        tags=list(tags),
        source_types=[SourceType(st) for st in source_types],
        date_from=date_from,
        date_to=date_to,
        title=title,
        result_count=count,
    )


def filter_options(func):
    """Shared retrieval filter options."""
    options = [
        click.option('--user', '-u', 'user_id', required=True, envvar='SECOND_BRAIN_USER', help='Owner id'),
        click.option('--document', '-d', 'documents', multiple=True, help='Restrict to document id (repeatable)'),
        click.option('--tag', 'tags', multiple=True, help='Restrict to documents with tag (repeatable)'),
        click.option(
            '--source-type', 'source_types', multiple=True,
            type=click.Choice([st.value for st in SourceType]),
            help='Restrict to source type (repeatable)'
        ),
        click.option('--from', 'date_from', type=click.DateTime(formats=['%Y-%m-%d']), help='Earliest document date'),
        click.option('--to', 'date_to', type=click.DateTime(formats=['%Y-%m-%d']), help='Latest document date'),
        click.option('--title', help='Exact document title'),
        click.option('--count', '-k', type=click.IntRange(min=1), help='Number of results (adaptive by default)'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file path (JSON)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Second Brain personal knowledge-base assistant CLI."""
    ctx.ensure_object(dict)

    # Initialize configuration
    config_manager = ConfigManager(config)
    system_config = config_manager.load_config()
    if verbose:
        system_config.logging.level = "DEBUG"
    configure_logging(system_config.logging)

    ctx.obj['config'] = system_config
    ctx.obj['config_manager'] = config_manager


@cli.command()
@click.argument('query')
@filter_options
@click.option('--conversation', 'conversation_id', help='Conversation id to continue')
@click.pass_context
def ask(ctx, query: str, user_id: str, documents: tuple, tags: tuple, source_types: tuple,
        date_from: Optional[datetime], date_to: Optional[datetime], title: Optional[str],
        count: Optional[int], conversation_id: Optional[str]):
    """Ask a question and get a cited answer."""
    config = ctx.obj['config']
    filters = _build_filters(documents, tags, source_types, date_from, date_to, title, count)

    assistant = create_assistant(config)
    try:
        result = asyncio.run(assistant.ask(user_id, query, filters, conversation_id))
    except (PipelineError, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(result.answer)
    if result.response.low_confidence and result.response.has_results:
        click.echo("\n(Low confidence: the retrieved context is only loosely related.)")
    if result.response.deleted_document_ids:
        click.echo(f"\nMissing documents: {', '.join(result.response.deleted_document_ids)}")

    if result.response.evidence:
        click.echo("\nSources:")
        for item in result.response.evidence:
            click.echo(f"  {item.citation} score={item.score:.3f}")
    click.echo(f"\nConversation: {result.conversation_id}")


@cli.command()
@click.argument('query')
@filter_options
@click.option('--stats', is_flag=True, help='Show embedding and generation statistics')
@click.pass_context
def search(ctx, query: str, user_id: str, documents: tuple, tags: tuple, source_types: tuple,
           date_from: Optional[datetime], date_to: Optional[datetime], title: Optional[str],
           count: Optional[int], stats: bool):
    """Show the evidence retrieved for a question without answering it."""
    config = ctx.obj['config']
    filters = _build_filters(documents, tags, source_types, date_from, date_to, title, count)

    generator = OllamaClient(config.llm)
    pipeline = create_pipeline(config, generator=generator)
    request = RetrievalRequest(owner_id=user_id, query_text=query, filters=filters)
    try:
        response = asyncio.run(pipeline.retrieve(request))
    except (PipelineError, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(f"Searching for: {query}")
    click.echo(f"Mode: {response.mode.value}, target: {response.target_count}")
    if response.translated_query:
        click.echo(f"Translated query: {response.translated_query}")
    for expansion in response.expansions:
        click.echo(f"Expansion: {expansion}")
    if response.deleted_document_ids:
        click.echo(f"Missing documents: {', '.join(response.deleted_document_ids)}")

    if not response.has_results:
        click.echo("No results.")

    for item in response.evidence:
        click.echo(f"\n{item.citation} score={item.score:.3f}")
        click.echo(f"  {item.excerpt(config.retrieval.excerpt_length)}")
    if response.has_results and response.low_confidence:
        click.echo("\nLow confidence results.")

    if stats:
        embedding_stats = pipeline.embedder.get_embedding_stats()
        generation_stats = generator.get_generation_stats()
        click.echo("\n=== Statistics ===")
        click.echo(f"Embeddings: {embedding_stats['total_embeddings']} "
                   f"({embedding_stats['failed_embeddings']} failed) on {embedding_stats['device']}")
        click.echo(f"Generation requests: {generation_stats['successful_requests']}/"
                   f"{generation_stats['total_requests']} succeeded, "
                   f"avg {generation_stats['average_response_time']:.2f}s")
        for model, usage in generation_stats['model_usage'].items():
            click.echo(f"  {model}: {usage['requests']} requests, {usage['characters']} characters")
    generator.close()


@cli.command()
@click.pass_context
def init(ctx):
    """Create the vector collection and the metadata schema."""
    config = ctx.obj['config']

    async def create_collection():
        store = QdrantVectorStore(config.storage, config.embedding)
        try:
            await store.ensure_collection()
        finally:
            await store.close()

    try:
        asyncio.run(create_collection())
    except PipelineError as e:
        raise click.ClickException(str(e))
    click.echo(f"Collection {config.storage.collection_name} ready")

    SQLiteMetadataStore(config.storage.metadata_db_path)
    click.echo(f"Metadata database {config.storage.metadata_db_path} ready")


@cli.command()
@click.option('--user', '-u', 'user_id', envvar='SECOND_BRAIN_USER', help='Owner id for document counts')
@click.pass_context
def status(ctx, user_id: Optional[str]):
    """Show system status and health information."""
    config = ctx.obj['config']

    click.echo("=== Second Brain Status ===")

    ollama = OllamaClient(config.llm)
    available = ollama.is_available()
    click.echo(f"Ollama ({config.llm.base_url}): {'available' if available else 'unreachable'}")
    if available:
        try:
            names = [model.name for model in ollama.list_models()]
            click.echo(f"Models: {', '.join(names) if names else 'none'}")
        except PipelineError as e:
            click.echo(f"Models: unknown ({e})")
    ollama.close()

    async def collection_info():
        store = QdrantVectorStore(config.storage, config.embedding)
        try:
            return await store.get_collection_info()
        finally:
            await store.close()

    info = asyncio.run(collection_info())
    if info:
        click.echo(f"Collection {info['collection_name']}: {info['points_count']} vectors ({info['status']})")
    else:
        click.echo(f"Collection {config.storage.collection_name}: not available")

    if user_id:
        store = SQLiteMetadataStore(config.storage.metadata_db_path)
        documents = asyncio.run(store.list_documents(user_id))
        ingesting = sum(1 for doc in documents if doc.is_ingesting)
        click.echo(f"Documents for {user_id}: {len(documents)} ({ingesting} ingesting)")


@cli.command()
@click.pass_context
def config_show(ctx):
    """Show current configuration."""
    config = ctx.obj['config']

    click.echo("=== Current Configuration ===")
    click.echo(f"Embedding model: {config.embedding.text_model_name} ({config.embedding.embedding_dimension}d)")
    click.echo(f"Ollama: {config.llm.base_url} answer={config.llm.answer_model} rewrite={config.llm.rewrite_model}")
    click.echo(f"Qdrant: {config.storage.qdrant_url or config.storage.qdrant_path} "
               f"collection={config.storage.collection_name}")
    click.echo(f"Metadata database: {config.storage.metadata_db_path}")
    click.echo(f"Coverage budget: {config.retrieval.coverage_budget} (floor {config.retrieval.coverage_floor})")
    click.echo(f"Log level: {config.logging.level}")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
