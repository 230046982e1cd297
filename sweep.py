from onemeal.jobs.sweep import main

if __name__ == "__main__":
    main()
